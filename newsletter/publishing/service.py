"""Publish a newsletter issue exactly once per idempotency key.

Flow::

    validate -> try_processing -> (issue + fan-out, one transaction)
             -> save_response (commits everything)

Input is validated before the ledger is touched, so rejected requests never
occupy a key.  Emails are not sent here: the delivery worker drains the
tasks created by the fan-out.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from uuid import UUID

from fastapi.responses import RedirectResponse

from newsletter.delivery.queue import DeliveryQueue
from newsletter.domain.issue import IssueContent
from newsletter.idempotency.coordinator import IdempotencyCoordinator, ReturnSavedResponse
from newsletter.idempotency.key import IdempotencyKey
from newsletter.idempotency.response import SavedResponse

logger = logging.getLogger(__name__)

PUBLISHED_REDIRECT = "/admin/newsletters"


class PublishService:
    def __init__(self, coordinator: IdempotencyCoordinator, queue: DeliveryQueue) -> None:
        self.coordinator = coordinator
        self.queue = queue

    def publish(
        self,
        content: IssueContent,
        idempotency_key: IdempotencyKey,
        user_id: UUID,
        recipients: Sequence[str] | None = None,
    ) -> SavedResponse:
        """Publish *content*, or return the response of an earlier identical request.

        When *recipients* is ``None`` the issue goes to every confirmed
        subscriber, read inside the publishing transaction.
        """
        action = self.coordinator.try_processing(user_id, idempotency_key)
        if isinstance(action, ReturnSavedResponse):
            return action.response

        claim = action.claim
        try:
            if recipients is None:
                issue = self.queue.enqueue_for_confirmed(claim.session, content)
            else:
                issue = self.queue.enqueue_many(claim.session, content, recipients)
        except Exception:
            self.coordinator.abandon(claim)
            raise

        logger.info("Newsletter issue %s published by user %s", issue.newsletter_issue_id, user_id)
        return self.coordinator.save_response(claim, RedirectResponse(PUBLISHED_REDIRECT, status_code=303))
