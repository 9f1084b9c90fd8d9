"""Exception taxonomy shared by the delivery queue, the worker and the
idempotency layer.

Transient infrastructure failures are ``StoreError`` and are retried by the
worker loop.  Per-task failures (``InvalidEmailError``, ``GatewayError``,
``IssueNotFoundError``) are logged and the task is retired.  Duplicate
submissions are not errors at all.
"""
from __future__ import annotations


class StoreError(RuntimeError):
    """Raised when the backing store fails (unreachable, conflict abort)."""


class ClaimLostError(StoreError):
    """Raised when a leased claim expired and was taken by another worker."""


class IssueNotFoundError(LookupError):
    """Raised when a delivery task references an issue that does not exist."""


class InvalidEmailError(ValueError):
    """Raised when a string is not a valid email address."""


class GatewayError(RuntimeError):
    """Raised when the email gateway times out, is unreachable or rejects a message."""


class InvalidIdempotencyKeyError(ValueError):
    """Raised for empty or over-long idempotency keys."""


class PublishValidationError(ValueError):
    """Raised for publish input rejected before any ledger claim is made."""


class SavedResponseMissingError(StoreError):
    """Raised when a committed ledger record carries no response."""
