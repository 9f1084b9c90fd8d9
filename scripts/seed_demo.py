#!/usr/bin/env python3
"""Seed demo data: subscriptions in both confirmation states.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

import sys

from sqlalchemy.orm import Session

# Ensure project root is on sys.path
sys.path.insert(0, ".")

from newsletter.core.settings import get_settings
from newsletter.db.base import Base
from newsletter.db.models import SUBSCRIPTION_CONFIRMED, SUBSCRIPTION_PENDING, Subscription
from newsletter.db.session import create_db_engine, make_session_factory


def seed(session: Session) -> None:
    """Insert demo subscribers; unconfirmed ones never receive issues."""
    demo_subscribers = [
        ("Ursula Le Guin", "ursula.le.guin@example.com", SUBSCRIPTION_CONFIRMED),
        ("Octavia Butler", "octavia.butler@example.com", SUBSCRIPTION_CONFIRMED),
        ("Ted Chiang", "ted.chiang@example.com", SUBSCRIPTION_CONFIRMED),
        ("Iain Banks", "iain.banks@example.com", SUBSCRIPTION_PENDING),
        # Predates address validation; the worker skips it.
        ("Legacy Import", "legacy-import-without-domain", SUBSCRIPTION_CONFIRMED),
    ]
    for name, email, status in demo_subscribers:
        session.add(Subscription(name=name, email=email, status=status))
    session.commit()


def main() -> None:
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    with make_session_factory(engine)() as session:
        seed(session)
    print(f"Seeded demo subscribers into {engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    main()
