from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    PrimaryKeyConstraint,
    SmallInteger,
    String,
    Text,
    func,
    text as sql_text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from newsletter.db.base import Base

SUBSCRIPTION_PENDING = "pending_confirmation"
SUBSCRIPTION_CONFIRMED = "confirmed"


class Subscription(Base):
    """A newsletter subscriber.  Only ``confirmed`` rows receive issues."""

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=SUBSCRIPTION_PENDING, server_default=sql_text("'pending_confirmation'")
    )
    subscribed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class NewsletterIssue(Base):
    """Published issue content.  Written once at publish time, never updated."""

    __tablename__ = "newsletter_issues"

    newsletter_issue_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    text_content: Mapped[str] = mapped_column(Text, nullable=False)
    html_content: Mapped[str] = mapped_column(Text, nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    delivery_tasks: Mapped[list[IssueDeliveryTask]] = relationship(back_populates="issue")


class IssueDeliveryTask(Base):
    """One pending ``(issue, recipient)`` delivery obligation.

    A row exists until its single delivery attempt has been made.  The
    ``claim_token``/``claimed_until`` pair is only written by the lease-based
    claim strategy used on stores without ``SKIP LOCKED``.
    """

    __tablename__ = "issue_delivery_queue"
    __table_args__ = (
        PrimaryKeyConstraint("newsletter_issue_id", "subscriber_email", name="pk_issue_delivery_queue"),
    )

    newsletter_issue_id: Mapped[UUID] = mapped_column(
        ForeignKey("newsletter_issues.newsletter_issue_id"), nullable=False
    )
    subscriber_email: Mapped[str] = mapped_column(String(320), nullable=False)
    n_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=sql_text("0"))
    execute_after: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claim_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    issue: Mapped[NewsletterIssue] = relationship(back_populates="delivery_tasks")


class IdempotencyRecord(Base):
    """Ledger entry keyed by ``(user_id, idempotency_key)``.

    Response columns stay NULL while the owning request is in flight and are
    written exactly once, in the same transaction as the request's other
    writes.
    """

    __tablename__ = "idempotency"
    __table_args__ = (PrimaryKeyConstraint("user_id", "idempotency_key", name="pk_idempotency"),)

    user_id: Mapped[UUID] = mapped_column(nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(50), nullable=False)
    response_status_code: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    response_headers: Mapped[list | None] = mapped_column(JSON, nullable=True)
    response_body: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )
