"""Validated subscriber email address.

Addresses stored in ``subscriptions`` or ``issue_delivery_queue`` may
predate the current validation rules, so every stored address is parsed
again before the gateway is called.  Parsing never performs DNS lookups.
"""
from __future__ import annotations

from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email

from newsletter.core.errors import InvalidEmailError


@dataclass(frozen=True)
class SubscriberEmail:
    value: str

    @classmethod
    def parse(cls, raw: str) -> SubscriberEmail:
        """Return a ``SubscriberEmail`` for *raw* or raise ``InvalidEmailError``."""
        if raw is None or not raw.strip():
            raise InvalidEmailError("email address is empty")
        try:
            validate_email(raw, check_deliverability=False)
        except EmailNotValidError as exc:
            raise InvalidEmailError(f"{raw!r} is not a valid subscriber email: {exc}") from exc
        return cls(raw)

    def __str__(self) -> str:
        return self.value
