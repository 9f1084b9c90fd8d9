from __future__ import annotations

from dataclasses import dataclass

from newsletter.core.errors import InvalidIdempotencyKeyError

MAX_KEY_LENGTH = 50


@dataclass(frozen=True)
class IdempotencyKey:
    """Caller-supplied token identifying one logical request, scoped per user."""

    value: str

    @classmethod
    def parse(cls, raw: str | None) -> IdempotencyKey:
        if raw is None or raw == "":
            raise InvalidIdempotencyKeyError("The idempotency key cannot be empty")
        if len(raw) >= MAX_KEY_LENGTH:
            raise InvalidIdempotencyKeyError(
                f"The idempotency key must be shorter than {MAX_KEY_LENGTH} characters"
            )
        return cls(raw)

    def __str__(self) -> str:
        return self.value
