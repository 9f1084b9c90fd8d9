"""Tests for newsletter/idempotency: ledger, coordinator and saved responses."""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from fastapi.responses import RedirectResponse
from starlette.responses import Response

from newsletter.core.errors import SavedResponseMissingError, StoreError
from newsletter.db.models import IdempotencyRecord
from newsletter.db.session import create_db_engine, make_session_factory
from newsletter.idempotency.coordinator import IdempotencyCoordinator, ReturnSavedResponse, StartProcessing
from newsletter.idempotency.key import IdempotencyKey
from newsletter.idempotency.response import SavedResponse

KEY = IdempotencyKey.parse("publish-1")


@pytest.fixture()
def coordinator(session_factory) -> IdempotencyCoordinator:
    return IdempotencyCoordinator(session_factory)


def _redirect() -> Response:
    return RedirectResponse("/admin/newsletters", status_code=303)


def _process(coordinator: IdempotencyCoordinator, user_id: UUID, key: IdempotencyKey) -> SavedResponse:
    action = coordinator.try_processing(user_id, key)
    if isinstance(action, ReturnSavedResponse):
        return action.response
    return coordinator.save_response(action.claim, _redirect())


# ===========================================================================
# SavedResponse
# ===========================================================================

class TestSavedResponse:
    def test_from_redirect_keeps_location_and_drops_content_length(self):
        saved = SavedResponse.from_response(_redirect())

        assert saved.status_code == 303
        assert ("location", "/admin/newsletters") in saved.headers
        assert all(name != "content-length" for name, _ in saved.headers)

    def test_rebuilt_response_matches(self):
        original = Response(content=b"published", status_code=200, headers={"x-issue": "1"})
        rebuilt = SavedResponse.from_response(original).to_response()

        assert rebuilt.status_code == 200
        assert rebuilt.body == b"published"
        assert rebuilt.headers["x-issue"] == "1"
        assert rebuilt.headers["content-length"] == str(len(b"published"))

    def test_repeated_headers_are_preserved(self):
        saved = SavedResponse(status_code=200, headers=[("set-cookie", "a=1"), ("set-cookie", "b=2")])
        assert saved.to_response().headers.getlist("set-cookie") == ["a=1", "b=2"]


# ===========================================================================
# IdempotencyCoordinator
# ===========================================================================

class TestTryProcessing:
    def test_fresh_key_starts_processing(self, coordinator):
        action = coordinator.try_processing(uuid4(), KEY)

        assert isinstance(action, StartProcessing)
        coordinator.abandon(action.claim)

    def test_completed_key_returns_saved_response(self, coordinator):
        user_id = uuid4()
        first = _process(coordinator, user_id, KEY)

        action = coordinator.try_processing(user_id, KEY)

        assert isinstance(action, ReturnSavedResponse)
        assert action.response == first

    def test_same_key_different_users_are_independent(self, coordinator):
        first = coordinator.try_processing(uuid4(), KEY)
        coordinator.save_response(first.claim, _redirect())

        second = coordinator.try_processing(uuid4(), KEY)

        assert isinstance(second, StartProcessing)
        coordinator.abandon(second.claim)

    def test_different_keys_same_user_are_independent(self, coordinator):
        user_id = uuid4()
        _process(coordinator, user_id, KEY)

        action = coordinator.try_processing(user_id, IdempotencyKey.parse("publish-2"))

        assert isinstance(action, StartProcessing)
        coordinator.abandon(action.claim)

    def test_abandoned_claim_releases_key(self, coordinator):
        user_id = uuid4()
        action = coordinator.try_processing(user_id, KEY)
        coordinator.abandon(action.claim)

        retry = coordinator.try_processing(user_id, KEY)

        assert isinstance(retry, StartProcessing)
        coordinator.abandon(retry.claim)

    def test_record_without_response_is_an_error(self, coordinator, session_factory):
        user_id = uuid4()
        with session_factory() as db:
            db.add(IdempotencyRecord(user_id=user_id, idempotency_key=KEY.value))
            db.commit()

        with pytest.raises(SavedResponseMissingError):
            coordinator.try_processing(user_id, KEY)


class TestConcurrentDuplicates:
    def test_work_runs_once_for_concurrent_duplicates(self, coordinator):
        user_id = uuid4()
        executions = 0
        lock = threading.Lock()

        def submit() -> SavedResponse:
            nonlocal executions
            action = coordinator.try_processing(user_id, KEY)
            if isinstance(action, ReturnSavedResponse):
                return action.response
            with lock:
                executions += 1
            time.sleep(0.2)  # duplicates arrive while this one is in flight
            return coordinator.save_response(action.claim, _redirect())

        with ThreadPoolExecutor(max_workers=6) as pool:
            responses = [f.result() for f in [pool.submit(submit) for _ in range(6)]]

        assert executions == 1
        assert len(set((r.status_code, r.body, tuple(r.headers)) for r in responses)) == 1
        assert responses[0].status_code == 303

    def test_sqlite_busy_timeout_bounds_the_wait(self, coordinator, engine):
        user_id = uuid4()
        in_flight = coordinator.try_processing(user_id, KEY)
        impatient_engine = create_db_engine(str(engine.url), connect_args={"timeout": 0.1})
        impatient = IdempotencyCoordinator(make_session_factory(impatient_engine))

        try:
            with pytest.raises(StoreError):
                impatient.try_processing(user_id, KEY)
        finally:
            coordinator.abandon(in_flight.claim)
            impatient_engine.dispose()

        retry = coordinator.try_processing(user_id, KEY)
        assert isinstance(retry, StartProcessing)
        coordinator.abandon(retry.claim)


# ===========================================================================
# Retention
# ===========================================================================

class TestPurge:
    def test_purges_only_old_completed_records(self, coordinator, session_factory):
        old = datetime.now(timezone.utc) - timedelta(days=10)
        with session_factory() as db:
            db.add_all(
                [
                    IdempotencyRecord(
                        user_id=uuid4(), idempotency_key="old-done", created_at=old,
                        response_status_code=303, response_headers=[], response_body=b"",
                    ),
                    IdempotencyRecord(user_id=uuid4(), idempotency_key="old-pending", created_at=old),
                ]
            )
            db.commit()
        _process(coordinator, uuid4(), KEY)

        purged = coordinator.ledger.purge_older_than(datetime.now(timezone.utc) - timedelta(days=1))

        assert purged == 1
        with session_factory() as db:
            remaining = sorted(r.idempotency_key for r in db.query(IdempotencyRecord).all())
        assert remaining == ["old-pending", KEY.value]
