"""FastAPI dependency injection: session factory and service factories."""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from newsletter.core.settings import get_settings
from newsletter.db.session import get_session_factory
from newsletter.delivery.queue import DeliveryQueue
from newsletter.idempotency.coordinator import IdempotencyCoordinator
from newsletter.publishing.service import PublishService


def get_db_factory() -> sessionmaker:
    """Return the process-wide session factory.

    Publishing manages its own transactions (the idempotency claim is the
    unit of work), so routes receive the factory rather than a session.
    """
    return get_session_factory()


def get_delivery_queue(factory: sessionmaker = Depends(get_db_factory)) -> DeliveryQueue:
    return DeliveryQueue(factory, lease_seconds=get_settings().delivery_claim_lease_seconds)


def get_coordinator(factory: sessionmaker = Depends(get_db_factory)) -> IdempotencyCoordinator:
    return IdempotencyCoordinator(factory)


def get_publish_service(
    coordinator: IdempotencyCoordinator = Depends(get_coordinator),
    queue: DeliveryQueue = Depends(get_delivery_queue),
) -> PublishService:
    return PublishService(coordinator, queue)
