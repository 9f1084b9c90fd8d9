"""Durable delivery work queue backed by ``issue_delivery_queue``.

One row per pending ``(issue, recipient)`` pair.  Rows are created in bulk
inside the publishing transaction and deleted once their delivery attempt
has been made.

Two claim strategies, selected from the bound dialect:

- ``row_lock``: ``SELECT ... FOR UPDATE SKIP LOCKED LIMIT 1``.  The claim is
  the open transaction itself; if the worker dies the connection abort
  releases the lock and another worker picks the row up.
- ``lease``: for stores without skip-locked row acquisition (SQLite).  The
  row is stamped with a random claim token and an expiry by a conditional
  ``UPDATE`` and committed immediately.  An abandoned claim becomes
  claimable again once ``claimed_until`` passes.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal
from uuid import UUID, uuid4

from sqlalchemy import Select, delete, func, insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from newsletter.core.errors import ClaimLostError, StoreError
from newsletter.db.models import IssueDeliveryTask, NewsletterIssue
from newsletter.db.repositories import NewsletterIssueRepository, SubscriptionRepository
from newsletter.domain.issue import IssueContent

logger = logging.getLogger(__name__)

ClaimStrategy = Literal["row_lock", "lease"]

# Oracle rejects FOR UPDATE combined with row limiting, so it takes the lease path.
_SKIP_LOCKED_DIALECTS = frozenset({"postgresql", "mysql", "mariadb"})
_LEASE_CANDIDATES = 16


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def claim_strategy_for_dialect(dialect_name: str) -> ClaimStrategy:
    return "row_lock" if dialect_name in _SKIP_LOCKED_DIALECTS else "lease"


@dataclass
class ClaimedTask:
    """An exclusive claim on one delivery task.

    ``session`` is the unit of work the claim lives in and is closed by
    :meth:`DeliveryQueue.retire`, :meth:`DeliveryQueue.release_for_retry`
    or :meth:`DeliveryQueue.abandon`.
    """

    issue_id: UUID
    subscriber_email: str
    n_attempts: int
    strategy: ClaimStrategy
    session: Session
    claim_token: str | None = None


class DeliveryQueue:
    """Enqueue, claim and retire delivery tasks."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock

    # -- enqueue ------------------------------------------------------------

    def enqueue_many(
        self,
        db: Session,
        content: IssueContent,
        recipients: Iterable[str],
    ) -> NewsletterIssue:
        """Insert the issue and one task per recipient into *db*'s transaction.

        Flushes but does **not** commit: the caller owns the transaction, so
        a failure here followed by the caller's rollback leaves neither the
        issue nor any of its tasks behind.
        """
        recipients = list(recipients)
        try:
            issue = NewsletterIssueRepository(db).create(
                title=content.title,
                html_content=content.html_content,
                text_content=content.text_content,
                published_at=self._clock(),
            )
            if recipients:
                db.execute(
                    insert(IssueDeliveryTask),
                    [
                        {"newsletter_issue_id": issue.newsletter_issue_id, "subscriber_email": email}
                        for email in recipients
                    ],
                )
            db.flush()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to enqueue delivery tasks") from exc

        logger.info(
            "Enqueued %d delivery tasks for issue %s", len(recipients), issue.newsletter_issue_id
        )
        return issue

    def enqueue_for_confirmed(self, db: Session, content: IssueContent) -> NewsletterIssue:
        """Fan out to every confirmed subscriber, read inside the same transaction."""
        try:
            recipients = SubscriptionRepository(db).confirmed_emails()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load confirmed subscribers") from exc
        return self.enqueue_many(db, content, recipients)

    # -- claim --------------------------------------------------------------

    def strategy_for(self, db: Session) -> ClaimStrategy:
        return claim_strategy_for_dialect(db.get_bind().dialect.name)

    def claim_next(self) -> ClaimedTask | None:
        """Claim one pending task not held by any other claim.

        Returns ``None`` when nothing is claimable.  No ordering between
        tasks is guaranteed.
        """
        db = self._session_factory()
        try:
            if self.strategy_for(db) == "row_lock":
                claim = self._claim_with_row_lock(db)
            else:
                claim = self._claim_with_lease(db)
        except SQLAlchemyError as exc:
            db.rollback()
            db.close()
            raise StoreError("Failed to claim a delivery task") from exc

        if claim is None:
            db.rollback()
            db.close()
        return claim

    def _claimable(self, now: datetime):
        return or_(IssueDeliveryTask.execute_after.is_(None), IssueDeliveryTask.execute_after <= now)

    def _lease_free(self, now: datetime):
        return or_(IssueDeliveryTask.claimed_until.is_(None), IssueDeliveryTask.claimed_until < now)

    def row_lock_statement(self, now: datetime) -> Select:
        """``SELECT ... FOR UPDATE SKIP LOCKED LIMIT 1`` over claimable tasks."""
        return (
            select(
                IssueDeliveryTask.newsletter_issue_id,
                IssueDeliveryTask.subscriber_email,
                IssueDeliveryTask.n_attempts,
            )
            .where(self._claimable(now))
            .with_for_update(skip_locked=True)
            .limit(1)
        )

    def _claim_with_row_lock(self, db: Session) -> ClaimedTask | None:
        row = db.execute(self.row_lock_statement(self._clock())).first()
        if row is None:
            return None
        return ClaimedTask(
            issue_id=row.newsletter_issue_id,
            subscriber_email=row.subscriber_email,
            n_attempts=row.n_attempts,
            strategy="row_lock",
            session=db,
        )

    def _claim_with_lease(self, db: Session) -> ClaimedTask | None:
        now = self._clock()
        candidates = db.execute(
            select(
                IssueDeliveryTask.newsletter_issue_id,
                IssueDeliveryTask.subscriber_email,
                IssueDeliveryTask.n_attempts,
            )
            .where(self._claimable(now), self._lease_free(now))
            .limit(_LEASE_CANDIDATES)
        ).all()

        for row in candidates:
            token = uuid4().hex
            result = db.execute(
                update(IssueDeliveryTask)
                .where(
                    IssueDeliveryTask.newsletter_issue_id == row.newsletter_issue_id,
                    IssueDeliveryTask.subscriber_email == row.subscriber_email,
                    self._lease_free(now),
                )
                .values(claim_token=token, claimed_until=now + self._lease)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.commit()
                return ClaimedTask(
                    issue_id=row.newsletter_issue_id,
                    subscriber_email=row.subscriber_email,
                    n_attempts=row.n_attempts,
                    strategy="lease",
                    session=db,
                    claim_token=token,
                )
        return None

    # -- finalize -----------------------------------------------------------

    def _task_filter(self, claim: ClaimedTask) -> list:
        criteria = [
            IssueDeliveryTask.newsletter_issue_id == claim.issue_id,
            IssueDeliveryTask.subscriber_email == claim.subscriber_email,
        ]
        if claim.strategy == "lease":
            criteria.append(IssueDeliveryTask.claim_token == claim.claim_token)
        return criteria

    def retire(self, claim: ClaimedTask) -> None:
        """Delete the claimed task and release the claim in one commit."""
        db = claim.session
        try:
            result = db.execute(
                delete(IssueDeliveryTask)
                .where(*self._task_filter(claim))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ClaimLostError(
                    f"Delivery task for issue {claim.issue_id} is no longer held by this claim"
                )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError(f"Failed to retire delivery task for issue {claim.issue_id}") from exc
        finally:
            db.close()

    def release_for_retry(self, claim: ClaimedTask, delay_seconds: int) -> None:
        """Record a failed attempt and make the task claimable again after *delay_seconds*."""
        db = claim.session
        try:
            result = db.execute(
                update(IssueDeliveryTask)
                .where(*self._task_filter(claim))
                .values(
                    n_attempts=IssueDeliveryTask.n_attempts + 1,
                    claim_token=None,
                    claimed_until=None,
                    execute_after=self._clock() + timedelta(seconds=delay_seconds),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ClaimLostError(
                    f"Delivery task for issue {claim.issue_id} is no longer held by this claim"
                )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError(f"Failed to release delivery task for issue {claim.issue_id}") from exc
        finally:
            db.close()

    def abandon(self, claim: ClaimedTask) -> None:
        """Give the task back without recording an attempt."""
        db = claim.session
        try:
            db.rollback()
            if claim.strategy == "lease":
                db.execute(
                    update(IssueDeliveryTask)
                    .where(*self._task_filter(claim))
                    .values(claim_token=None, claimed_until=None)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError(f"Failed to abandon delivery task for issue {claim.issue_id}") from exc
        finally:
            db.close()

    # -- inspection ---------------------------------------------------------

    def pending_count(self) -> int:
        try:
            with self._session_factory() as db:
                return db.execute(select(func.count()).select_from(IssueDeliveryTask)).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to count pending delivery tasks") from exc
