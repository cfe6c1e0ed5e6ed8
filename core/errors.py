"""
core/errors.py -- Service-layer exception taxonomy.

Every failure the core can report maps to one HTTP status. api/main.py
installs a single handler for ServiceError that renders the uniform
{message, data} envelope, so route handlers raise and never build error
responses themselves.

  ValidationError      400  malformed input (phone number, session id, body)
  AuthenticationError  401  missing / invalid / expired / revoked token,
                            unknown or inactive user, bad credentials
  AuthorizationError   401  role not permitted (distinct audit action)
  NotFoundError        404  resource absent or not owned by the caller
  OtpError             400  not found / already used / expired / incorrect
  TransportError       500  SMS gateway failure
  StoreError           500  unexpected persistence failure
"""

from __future__ import annotations

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 500
    action: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        action: Optional[str] = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if action is not None:
            self.action = action
        self.data = data


class ValidationError(ServiceError):
    status_code = 400
    action = "VALIDATION_FAILED"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401).

    expired is set when the presented token had a valid signature but is past
    its deadline, so the caller can tell the user to log in again.
    """

    status_code = 401
    action = "AUTH_FAILED"

    def __init__(self, message: str, *, expired: bool = False, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.expired = expired


class AuthorizationError(ServiceError):
    status_code = 401
    action = "AUTHORIZATION_FAILED"


class NotFoundError(ServiceError):
    status_code = 404
    action = "NOT_FOUND"


class OtpError(ServiceError):
    """OTP verification failure (400). code distinguishes the case."""

    status_code = 400

    def __init__(self, message: str, *, code: str, **kwargs: Any) -> None:
        kwargs.setdefault("action", code)
        super().__init__(message, **kwargs)
        self.code = code


class TransportError(ServiceError):
    status_code = 500
    action = "TRANSPORT_FAILED"


class StoreError(ServiceError):
    status_code = 500
    action = "STORE_ERROR"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "OtpError",
    "TransportError",
    "StoreError",
]
