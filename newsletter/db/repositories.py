from __future__ import annotations

from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from newsletter.db import models

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = select(self.model).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def count(self) -> int:
        return self.db.execute(select(func.count()).select_from(self.model)).scalar_one()


class SubscriptionRepository(BaseRepository[models.Subscription]):
    model = models.Subscription

    def confirmed_emails(self) -> list[str]:
        """Return the stored address of every confirmed subscriber."""
        stmt = (
            select(models.Subscription.email)
            .where(models.Subscription.status == models.SUBSCRIPTION_CONFIRMED)
            .order_by(models.Subscription.subscribed_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())


class NewsletterIssueRepository(BaseRepository[models.NewsletterIssue]):
    model = models.NewsletterIssue


class IssueDeliveryTaskRepository(BaseRepository[models.IssueDeliveryTask]):
    model = models.IssueDeliveryTask

    def for_issue(self, issue_id: UUID) -> list[models.IssueDeliveryTask]:
        stmt = select(self.model).where(self.model.newsletter_issue_id == issue_id)
        return list(self.db.execute(stmt).scalars().all())
