"""Run the delivery worker as a standalone process.

Usage:
    newsletter-worker                 # uses DATABASE_URL etc. from env / .env
    python -m newsletter.delivery.run
"""
from __future__ import annotations

import logging
import signal
import threading

from newsletter.core.logging import setup_logging
from newsletter.core.settings import Settings, get_settings
from newsletter.db.session import get_session_factory
from newsletter.delivery.issues import IssueStore
from newsletter.delivery.queue import DeliveryQueue
from newsletter.delivery.worker import DeliveryWorker
from newsletter.notification.email_client import EmailClient

logger = logging.getLogger(__name__)


def build_worker(settings: Settings | None = None) -> DeliveryWorker:
    settings = settings or get_settings()
    session_factory = get_session_factory()
    queue = DeliveryQueue(session_factory, lease_seconds=settings.delivery_claim_lease_seconds)
    return DeliveryWorker.from_settings(
        queue,
        IssueStore(session_factory),
        EmailClient.from_settings(settings),
        settings,
    )


def start_background_worker(stop_event: threading.Event) -> threading.Thread:
    """Start the worker loop on a daemon thread bound to *stop_event*."""
    worker = build_worker()
    thread = threading.Thread(
        target=worker.run_until_stopped,
        args=(stop_event,),
        name="delivery-worker",
        daemon=True,
    )
    thread.start()
    return thread


def main() -> None:
    setup_logging()
    stop_event = threading.Event()

    def _request_stop(signum, _frame):
        logger.info("Received signal %s, stopping after the current iteration", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    build_worker().run_until_stopped(stop_event)


if __name__ == "__main__":
    main()
