from __future__ import annotations

from typing import Any, Mapping, Optional

from fastapi import Request, Response

from correlauth.config import Settings
from correlauth.service.auth import Credentials

AUTHORIZATION_HEADER = "Authorization"
# Debug-only response header carrying the authentication failure cause
DIAGNOSTIC_HEADER = "x-content-extend"


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    lower = header.lower()
    if not lower.startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


def http_credentials(request: Request, settings: Settings) -> Credentials:
    """Bearer token from the Authorization header, identifier from its cookie."""
    correlation_id = request.cookies.get(settings.correlation_cookie_name) or None
    return Credentials(
        token=extract_bearer(request.headers.get(AUTHORIZATION_HEADER)),
        correlation_id=correlation_id,
    )


def stream_credentials(params: Mapping[str, Any]) -> Credentials:
    """Credentials from WebSocket connection parameters.

    Message streams have no cookie channel, so no identifier is extracted.
    """
    header = params.get("authorization") or params.get(AUTHORIZATION_HEADER)
    return Credentials(token=extract_bearer(header if isinstance(header, str) else None))


class HttpResponseSink:
    """Writes renewed tokens, identifier cookies and diagnostics to a response."""

    def __init__(self, response: Response, settings: Settings) -> None:
        self.response = response
        self.settings = settings

    def set_token(self, token: str) -> None:
        self.response.headers[AUTHORIZATION_HEADER] = token

    def set_correlation_id(self, correlation_id: str) -> None:
        self.response.set_cookie(
            key=self.settings.correlation_cookie_name,
            value=correlation_id,
            max_age=self.settings.correlation_cookie_max_age,
            httponly=True,
        )

    def clear_correlation_id(self) -> None:
        self.response.delete_cookie(self.settings.correlation_cookie_name, httponly=True)

    def add_diagnostic(self, detail: str) -> None:
        # Dropped with the response when an error is raised; the error
        # handler repeats it from AuthenticationError.diagnostic
        self.response.headers.append(DIAGNOSTIC_HEADER, detail)
