"""Tests for publishing: PublishService and POST /admin/newsletters."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from newsletter.core.errors import StoreError
from newsletter.db.models import SUBSCRIPTION_CONFIRMED, SUBSCRIPTION_PENDING, IdempotencyRecord, Subscription
from newsletter.db.repositories import IssueDeliveryTaskRepository, NewsletterIssueRepository
from newsletter.delivery.issues import IssueStore
from newsletter.delivery.queue import DeliveryQueue
from newsletter.delivery.worker import DeliveryWorker, ExecutionOutcome
from newsletter.domain.issue import IssueContent
from newsletter.idempotency.coordinator import IdempotencyCoordinator
from newsletter.idempotency.key import IdempotencyKey
from newsletter.notification.email_client import EmailClient
from newsletter.publishing.service import PUBLISHED_REDIRECT, PublishService

CONTENT = IssueContent(title="Issue #1", html_content="<p>Hello</p>", text_content="Hello")
AUTH = ("editor", "s3cret")
FORM = {
    "title": "Issue #1",
    "html_content": "<p>Hello</p>",
    "text_content": "Hello",
    "idempotency_key": "publish-1",
}
CONFIRMED = ["a@example.com", "b@example.com", "c@example.com"]


def _add_subscribers(session_factory, emails, status=SUBSCRIPTION_CONFIRMED) -> None:
    with session_factory() as db:
        for i, email in enumerate(emails):
            db.add(Subscription(email=email, name=f"Subscriber {i}", status=status))
        db.commit()


def _counts(session_factory) -> tuple[int, int]:
    with session_factory() as db:
        return NewsletterIssueRepository(db).count(), IssueDeliveryTaskRepository(db).count()


def _idempotency_rows(session_factory) -> int:
    with session_factory() as db:
        return db.query(IdempotencyRecord).count()


@pytest.fixture()
def subscribers(session_factory) -> None:
    _add_subscribers(session_factory, CONFIRMED)
    _add_subscribers(session_factory, ["pending@example.com"], status=SUBSCRIPTION_PENDING)


@pytest.fixture()
def service(session_factory) -> PublishService:
    return PublishService(IdempotencyCoordinator(session_factory), DeliveryQueue(session_factory))


# ===========================================================================
# PublishService
# ===========================================================================

class TestPublishService:
    def test_fans_out_to_confirmed_subscribers(self, subscribers, service, session_factory, user_id):
        saved = service.publish(CONTENT, IdempotencyKey.parse("publish-1"), user_id)

        assert saved.status_code == 303
        assert ("location", PUBLISHED_REDIRECT) in saved.headers
        assert _counts(session_factory) == (1, 3)

    def test_duplicate_key_returns_saved_response(self, subscribers, service, session_factory, user_id):
        key = IdempotencyKey.parse("publish-1")

        first = service.publish(CONTENT, key, user_id)
        second = service.publish(CONTENT, key, user_id)

        assert second == first
        assert _counts(session_factory) == (1, 3)

    def test_new_key_publishes_again(self, subscribers, service, session_factory, user_id):
        service.publish(CONTENT, IdempotencyKey.parse("publish-1"), user_id)
        service.publish(CONTENT, IdempotencyKey.parse("publish-2"), user_id)

        assert _counts(session_factory) == (2, 6)

    def test_explicit_recipients(self, service, session_factory, user_id):
        service.publish(CONTENT, IdempotencyKey.parse("publish-1"), user_id, recipients=["x@example.com"])

        assert _counts(session_factory) == (1, 1)

    def test_failed_fan_out_releases_key(self, session_factory, user_id):
        queue = MagicMock(spec=DeliveryQueue)
        queue.enqueue_for_confirmed.side_effect = StoreError("disk full")
        failing = PublishService(IdempotencyCoordinator(session_factory), queue)
        key = IdempotencyKey.parse("publish-1")

        with pytest.raises(StoreError):
            failing.publish(CONTENT, key, user_id)

        assert _idempotency_rows(session_factory) == 0
        healthy = PublishService(IdempotencyCoordinator(session_factory), DeliveryQueue(session_factory))
        assert healthy.publish(CONTENT, key, user_id).status_code == 303

    def test_concurrent_duplicates_publish_once(self, subscribers, service, session_factory, user_id):
        key = IdempotencyKey.parse("publish-1")

        with ThreadPoolExecutor(max_workers=5) as pool:
            responses = [f.result() for f in [pool.submit(service.publish, CONTENT, key, user_id) for _ in range(5)]]

        assert all(r == responses[0] for r in responses)
        assert responses[0].status_code == 303
        assert _counts(session_factory) == (1, 3)


# ===========================================================================
# POST /admin/newsletters
# ===========================================================================

class TestPublishRoute:
    def test_publish_redirects(self, subscribers, client, session_factory):
        response = client.post("/admin/newsletters", data=FORM, auth=AUTH, follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == PUBLISHED_REDIRECT
        assert _counts(session_factory) == (1, 3)

    def test_repeated_submission_is_identical(self, subscribers, client, session_factory):
        first = client.post("/admin/newsletters", data=FORM, auth=AUTH, follow_redirects=False)
        second = client.post("/admin/newsletters", data=FORM, auth=AUTH, follow_redirects=False)

        assert second.status_code == first.status_code
        assert second.content == first.content
        assert second.headers["location"] == first.headers["location"]
        assert _counts(session_factory) == (1, 3)

    @pytest.mark.parametrize("missing", ["title", "html_content", "text_content", "idempotency_key"])
    def test_missing_field_is_rejected_before_the_ledger(self, subscribers, client, session_factory, missing):
        form = {name: value for name, value in FORM.items() if name != missing}

        response = client.post("/admin/newsletters", data=form, auth=AUTH, follow_redirects=False)

        assert response.status_code == 400
        assert _idempotency_rows(session_factory) == 0
        assert _counts(session_factory) == (0, 0)

    def test_overlong_key_is_rejected(self, client, session_factory):
        form = dict(FORM, idempotency_key="k" * 50)

        response = client.post("/admin/newsletters", data=form, auth=AUTH, follow_redirects=False)

        assert response.status_code == 400
        assert "shorter than 50" in response.json()["detail"]

    def test_missing_credentials(self, client, session_factory):
        response = client.post("/admin/newsletters", data=FORM, follow_redirects=False)

        assert response.status_code == 401
        assert response.headers["www-authenticate"].startswith("Basic")
        assert _idempotency_rows(session_factory) == 0

    def test_wrong_password(self, client):
        response = client.post("/admin/newsletters", data=FORM, auth=("editor", "nope"), follow_redirects=False)

        assert response.status_code == 401


# ===========================================================================
# publish -> deliver
# ===========================================================================

def test_published_issue_is_delivered_once_per_subscriber(subscribers, client, session_factory):
    client.post("/admin/newsletters", data=FORM, auth=AUTH, follow_redirects=False)
    email_client = MagicMock(spec=EmailClient)
    queue = DeliveryQueue(session_factory)
    worker = DeliveryWorker(queue, IssueStore(session_factory), email_client)

    outcomes = [worker.try_execute_task() for _ in range(4)]

    assert outcomes == [ExecutionOutcome.TASK_COMPLETED] * 3 + [ExecutionOutcome.EMPTY_QUEUE]
    sent_to = sorted(str(c.args[0]) for c in email_client.send_email.call_args_list)
    assert sent_to == CONFIRMED
    assert all(c.args[1] == "Issue #1" for c in email_client.send_email.call_args_list)
