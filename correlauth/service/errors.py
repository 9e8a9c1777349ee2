from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - unauthorized (401)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}
        self.headers = headers or {}


class AuthenticationError(ServiceError):
    """Authentication failed (401). The message never names the cause."""
    status_code = 401
    error_code = "unauthorized"
    # Failure cause, populated only in debug mode
    diagnostic: Optional[str] = None


class ConfigurationError(ServiceError):
    """Settings cannot produce a working service (500)."""
    status_code = 500
    error_code = "server_error"


class AuthFailure(Exception):
    """Internal authentication failure cause.

    Never rendered to clients: the request authenticator collapses every
    subclass into a single ``AuthenticationError``. ``reason`` is the text
    written to the diagnostic channel in debug mode.
    """

    reason: str = "authentication failed"

    def __init__(self, reason: Optional[str] = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class TokenError(AuthFailure):
    """Token could not be verified."""


class MalformedToken(TokenError):
    reason = "jwt malformed"


class InvalidSignature(TokenError):
    reason = "invalid signature"


class TokenExpired(TokenError):
    reason = "jwt expired"


class BindingMismatch(AuthFailure):
    """Presented correlation id differs from the one inside the token."""
    reason = "not match to correlation id"


class SecretMismatch(AuthFailure):
    """Token carries a correlation secret that has been rotated away."""
    reason = "not match to secret"


class UnsafeToken(AuthFailure):
    """Token is due for renewal on a channel that cannot deliver a new one."""
    reason = "token is not safe"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "ConfigurationError",
    "AuthFailure",
    "TokenError",
    "MalformedToken",
    "InvalidSignature",
    "TokenExpired",
    "BindingMismatch",
    "SecretMismatch",
    "UnsafeToken",
]
