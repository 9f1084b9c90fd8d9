"""HTTP Basic authentication for admin routes.

Credential checking is delegated to a ``CredentialsValidator``: a callable
``(username, password) -> UUID`` that raises ``AuthError``.  The default
validator compares against the single admin account from settings; real
deployments override :func:`get_credentials_validator`.
"""
from __future__ import annotations

import hmac
from collections.abc import Callable
from uuid import UUID

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from newsletter.core.settings import get_settings

security = HTTPBasic(auto_error=False)

CredentialsValidator = Callable[[str, str], UUID]


class AuthError(Exception):
    """Raised when credentials are unknown or wrong."""


def validate_admin_credentials(username: str, password: str) -> UUID:
    settings = get_settings()
    username_ok = hmac.compare_digest(username.encode(), settings.admin_username.encode())
    password_ok = hmac.compare_digest(password.encode(), settings.admin_password.get_secret_value().encode())
    if not (username_ok and password_ok):
        raise AuthError("Invalid username or password")
    return settings.admin_user_id


def get_credentials_validator() -> CredentialsValidator:
    return validate_admin_credentials


def get_current_user_id(
    credentials: HTTPBasicCredentials | None = Depends(security),
    validate_credentials: CredentialsValidator = Depends(get_credentials_validator),
) -> UUID:
    challenge = {"WWW-Authenticate": 'Basic realm="publish"'}
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing credentials", headers=challenge)
    try:
        return validate_credentials(credentials.username, credentials.password)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc), headers=challenge)
