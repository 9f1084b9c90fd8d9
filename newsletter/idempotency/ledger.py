"""Idempotency ledger backed by the ``idempotency`` table.

A request claims ``(user_id, key)`` by inserting a pending row with
``INSERT ... ON CONFLICT DO NOTHING``.  The insert is the mutual exclusion:
when another transaction has inserted the same key but not committed yet,
the store makes this insert wait until that transaction resolves.  After a
commit the insert is a no-op and the stored response is read back; after a
rollback the insert succeeds and this request owns the key.

PostgreSQL provides the wait on the unique index.  SQLite engines built by
:func:`newsletter.db.session.create_db_engine` open every transaction with
``BEGIN IMMEDIATE``, which gives the same outcome through the database-wide
write lock.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from newsletter.core.errors import StoreError
from newsletter.db.models import IdempotencyRecord
from newsletter.idempotency.key import IdempotencyKey
from newsletter.idempotency.response import SavedResponse

logger = logging.getLogger(__name__)


@dataclass
class LedgerClaim:
    """Ownership of a pending ledger record.

    ``session`` holds the open transaction in which the pending row was
    inserted; the owner performs its business writes in it and finishes
    with :meth:`IdempotencyLedger.complete`.
    """

    session: Session
    user_id: UUID
    key: IdempotencyKey


class IdempotencyLedger:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory

    def begin(self, db: Session, user_id: UUID, key: IdempotencyKey) -> bool:
        """Insert a pending record; ``True`` when this transaction now owns the key."""
        values = {
            "user_id": user_id,
            "idempotency_key": key.value,
            "created_at": datetime.now(timezone.utc),
        }
        table = IdempotencyRecord.__table__
        try:
            dialect = db.get_bind().dialect.name
            if dialect == "postgresql":
                stmt = pg_insert(table).values(**values).on_conflict_do_nothing()
            elif dialect == "sqlite":
                stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing()
            else:
                return self._begin_with_savepoint(db, values)
            return db.execute(stmt).rowcount == 1
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to claim idempotency key for user {user_id}") from exc

    def _begin_with_savepoint(self, db: Session, values: dict) -> bool:
        try:
            with db.begin_nested():
                db.execute(insert(IdempotencyRecord.__table__).values(**values))
        except IntegrityError:
            return False
        return True

    def load(self, db: Session, user_id: UUID, key: IdempotencyKey) -> SavedResponse | None:
        """Return the stored response, or ``None`` if the record has none."""
        try:
            row = db.execute(
                select(
                    IdempotencyRecord.response_status_code,
                    IdempotencyRecord.response_headers,
                    IdempotencyRecord.response_body,
                ).where(
                    IdempotencyRecord.user_id == user_id,
                    IdempotencyRecord.idempotency_key == key.value,
                )
            ).first()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load saved response for user {user_id}") from exc
        if row is None or row.response_status_code is None:
            return None
        return SavedResponse.from_columns(row.response_status_code, row.response_headers, row.response_body)

    def complete(self, claim: LedgerClaim, response: SavedResponse) -> None:
        """Attach *response* to the pending record and commit the claim's transaction."""
        db = claim.session
        try:
            db.execute(
                update(IdempotencyRecord)
                .where(
                    IdempotencyRecord.user_id == claim.user_id,
                    IdempotencyRecord.idempotency_key == claim.key.value,
                )
                .values(
                    response_status_code=response.status_code,
                    response_headers=response.headers_as_json(),
                    response_body=response.body,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError(f"Failed to save response for user {claim.user_id}") from exc
        finally:
            db.close()

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete completed records created before *cutoff*; return the count.

        Pending records are never purged.  Nothing calls this implicitly:
        retention is an operator decision (``IDEMPOTENCY_RETENTION_HOURS``).
        """
        if self._session_factory is None:
            raise RuntimeError("purge_older_than requires a session factory")
        try:
            with self._session_factory() as db:
                result = db.execute(
                    delete(IdempotencyRecord)
                    .where(
                        IdempotencyRecord.created_at < cutoff,
                        IdempotencyRecord.response_status_code.is_not(None),
                    )
                    .execution_options(synchronize_session=False)
                )
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to purge idempotency records") from exc
        logger.info("Purged %d idempotency records created before %s", result.rowcount, cutoff.isoformat())
        return result.rowcount
