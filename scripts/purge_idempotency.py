#!/usr/bin/env python3
"""Delete completed idempotency records older than IDEMPOTENCY_RETENTION_HOURS.

Does nothing when the retention setting is unset: records are kept forever
unless an operator opts in.

Usage:
    IDEMPOTENCY_RETENTION_HOURS=48 python scripts/purge_idempotency.py
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime, timedelta, timezone

# Ensure project root is on sys.path
sys.path.insert(0, ".")

from newsletter.core.logging import setup_logging
from newsletter.core.settings import get_settings
from newsletter.db.session import get_session_factory
from newsletter.idempotency.ledger import IdempotencyLedger

logger = logging.getLogger("purge_idempotency")


def main() -> int:
    setup_logging()
    settings = get_settings()
    if settings.idempotency_retention_hours is None:
        logger.warning("IDEMPOTENCY_RETENTION_HOURS is not set; keeping all idempotency records")
        return 0

    cutoff = datetime.now(timezone.utc) - timedelta(hours=settings.idempotency_retention_hours)
    IdempotencyLedger(get_session_factory()).purge_older_than(cutoff)
    return 0


if __name__ == "__main__":
    sys.exit(main())
