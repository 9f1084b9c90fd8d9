"""Issue delivery worker.

Drains ``issue_delivery_queue`` one task at a time:

    claim -> parse recipient -> load issue -> send -> retire

Every claimed task is retired after a single attempt whatever its outcome
(sent, gateway failure, invalid stored address, missing issue); failures
are logged and the recipient is skipped for that issue.  Setting
``DELIVERY_MAX_ATTEMPTS`` above 1 turns gateway failures into delayed
re-attempts until the budget is spent.

Store errors and unexpected exceptions are not delivery outcomes: they
propagate out of :meth:`DeliveryWorker.try_execute_task` and the loop
retries after a short pause.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum

from newsletter.core.errors import GatewayError, InvalidEmailError, IssueNotFoundError, StoreError
from newsletter.core.settings import Settings, get_settings
from newsletter.delivery.issues import IssueStore
from newsletter.delivery.queue import ClaimedTask, DeliveryQueue
from newsletter.domain.subscriber_email import SubscriberEmail
from newsletter.notification.email_client import EmailClient

logger = logging.getLogger(__name__)


class ExecutionOutcome(str, Enum):
    TASK_COMPLETED = "task_completed"
    EMPTY_QUEUE = "empty_queue"


class DeliveryWorker:
    """Single-threaded delivery loop; run one instance per thread or process."""

    def __init__(
        self,
        queue: DeliveryQueue,
        issues: IssueStore,
        email_client: EmailClient,
        *,
        max_attempts: int = 1,
        retry_delay_seconds: int = 60,
        empty_queue_sleep_s: float = 10.0,
        error_sleep_s: float = 1.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.queue = queue
        self.issues = issues
        self.email_client = email_client
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.empty_queue_sleep_s = empty_queue_sleep_s
        self.error_sleep_s = error_sleep_s

    @classmethod
    def from_settings(
        cls,
        queue: DeliveryQueue,
        issues: IssueStore,
        email_client: EmailClient,
        settings: Settings | None = None,
    ) -> DeliveryWorker:
        settings = settings or get_settings()
        return cls(
            queue,
            issues,
            email_client,
            max_attempts=settings.delivery_max_attempts,
            retry_delay_seconds=settings.delivery_retry_delay_seconds,
            empty_queue_sleep_s=settings.delivery_empty_queue_sleep_seconds,
            error_sleep_s=settings.delivery_error_sleep_seconds,
        )

    # -- one iteration ------------------------------------------------------

    def try_execute_task(self) -> ExecutionOutcome:
        """Claim and process at most one task.

        Raises
        ------
        StoreError
            When claiming, loading the issue or retiring the task fails.

        Any exception raised while a claim is held abandons the claim
        before propagating.
        """
        claim = self.queue.claim_next()
        if claim is None:
            return ExecutionOutcome.EMPTY_QUEUE

        try:
            should_retry = self._deliver(claim)
        except Exception:
            self._abandon_quietly(claim)
            raise

        if should_retry:
            self.queue.release_for_retry(claim, self.retry_delay_seconds)
        else:
            self.queue.retire(claim)
        return ExecutionOutcome.TASK_COMPLETED

    def _deliver(self, claim: ClaimedTask) -> bool:
        """Attempt delivery; return ``True`` when the task should be re-attempted."""
        issue_id = claim.issue_id
        try:
            recipient = SubscriberEmail.parse(claim.subscriber_email)
        except InvalidEmailError as exc:
            logger.error(
                "Skipping a confirmed subscriber of issue %s: stored contact details are invalid (%s)",
                issue_id,
                exc,
            )
            return False

        try:
            content = self.issues.get(issue_id)
        except IssueNotFoundError:
            logger.error("Skipping delivery task: newsletter issue %s no longer exists", issue_id)
            return False

        try:
            self.email_client.send_email(
                recipient,
                content.title,
                content.html_content,
                content.text_content,
            )
        except GatewayError as exc:
            attempt = claim.n_attempts + 1
            if attempt < self.max_attempts:
                logger.warning(
                    "Delivery of issue %s to %s failed on attempt %d/%d, will retry: %s",
                    issue_id,
                    recipient,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                return True
            logger.error(
                "Failed to deliver issue %s to a confirmed subscriber %s. Skipping: %s",
                issue_id,
                recipient,
                exc,
            )
            return False

        logger.info("Delivered issue %s to %s", issue_id, recipient)
        return False

    def _abandon_quietly(self, claim: ClaimedTask) -> None:
        try:
            self.queue.abandon(claim)
        except StoreError:
            logger.warning("Could not abandon claim on issue %s; it will be released on expiry", claim.issue_id)

    # -- loop ---------------------------------------------------------------

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Poll until *stop_event* is set.

        The event is checked between iterations and interrupts the idle
        waits, so shutdown never waits for a full empty-queue interval.
        """
        logger.info("Delivery worker started")
        while not stop_event.is_set():
            try:
                outcome = self.try_execute_task()
            except StoreError:
                logger.exception("Delivery worker iteration failed; retrying in %ss", self.error_sleep_s)
                stop_event.wait(self.error_sleep_s)
                continue
            except Exception:
                logger.exception("Unexpected error in delivery worker; retrying in %ss", self.error_sleep_s)
                stop_event.wait(self.error_sleep_s)
                continue
            if outcome is ExecutionOutcome.EMPTY_QUEUE:
                stop_event.wait(self.empty_queue_sleep_s)
        logger.info("Delivery worker stopped")
