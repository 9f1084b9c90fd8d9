"""Gate in front of side-effecting requests.

For a fixed ``(user_id, key)`` exactly one caller receives
``StartProcessing``; it does its work in the claim's transaction and
finishes with :meth:`IdempotencyCoordinator.save_response`.  Every other
caller, concurrent or later, receives ``ReturnSavedResponse`` carrying the
response that first caller saved.

There is no timeout here: a duplicate waits as long as the original takes.
The store can still bound that wait.  On SQLite a duplicate gives up after
``SQLITE_BUSY_TIMEOUT_S`` (see :mod:`newsletter.db.session`) and
:meth:`IdempotencyCoordinator.try_processing` raises ``StoreError``, which
the publish route answers with a 500; the key stays with the original
request.  PostgreSQL waits until the original commits or rolls back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.responses import Response

from newsletter.core.errors import SavedResponseMissingError, StoreError
from newsletter.idempotency.key import IdempotencyKey
from newsletter.idempotency.ledger import IdempotencyLedger, LedgerClaim
from newsletter.idempotency.response import SavedResponse

logger = logging.getLogger(__name__)


@dataclass
class StartProcessing:
    claim: LedgerClaim


@dataclass
class ReturnSavedResponse:
    response: SavedResponse


NextAction = StartProcessing | ReturnSavedResponse


class IdempotencyCoordinator:
    def __init__(self, session_factory: sessionmaker, ledger: IdempotencyLedger | None = None) -> None:
        self._session_factory = session_factory
        self.ledger = ledger or IdempotencyLedger(session_factory)

    def try_processing(self, user_id: UUID, key: IdempotencyKey) -> NextAction:
        db = self._session_factory()
        try:
            if self.ledger.begin(db, user_id, key):
                logger.debug("Idempotency key claimed for user %s", user_id)
                return StartProcessing(LedgerClaim(session=db, user_id=user_id, key=key))
            saved = self.ledger.load(db, user_id, key)
        except StoreError:
            db.rollback()
            db.close()
            raise

        db.rollback()
        db.close()
        if saved is None:
            raise SavedResponseMissingError(
                f"Idempotency record for user {user_id} was committed without a response"
            )
        logger.info("Returning saved response for a repeated request from user %s", user_id)
        return ReturnSavedResponse(saved)

    def save_response(self, claim: LedgerClaim, response: Response) -> SavedResponse:
        """Persist *response* with the claim's other writes and commit them together."""
        saved = SavedResponse.from_response(response)
        self.ledger.complete(claim, saved)
        return saved

    def abandon(self, claim: LedgerClaim) -> None:
        """Roll back the claim's transaction, releasing the key for a fresh attempt."""
        db = claim.session
        try:
            db.rollback()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to roll back idempotent request for user {claim.user_id}") from exc
        finally:
            db.close()
