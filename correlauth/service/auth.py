from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from correlauth.logging import get_logger
from correlauth.service.correlation import CorrelationLifecycle
from correlauth.service.errors import (
    AuthenticationError,
    AuthFailure,
    BindingMismatch,
    UnsafeToken,
)
from correlauth.service.tokens import TokenCodec
from correlauth.storage.models import CorrelationRecord

logger = get_logger(__name__)

GENERIC_AUTH_FAILURE = "must authenticate"


class ResponseSink(Protocol):
    """Outbound channel of a request-style call.

    Message-stream connections have none; renewal is never attempted there.
    """

    def set_token(self, token: str) -> None: ...

    def set_correlation_id(self, correlation_id: str) -> None: ...

    def clear_correlation_id(self) -> None: ...

    def add_diagnostic(self, detail: str) -> None: ...


class UserCodec(Protocol):
    """Converts between the host's user model and token claim values.

    ``to_model_with_verification`` is optional. When present it replaces
    ``to_model`` for tokens due for renewal, so the host can re-check the
    user before a new token is issued. Either may return an awaitable.
    """

    def to_values(self, user: Any) -> Any: ...

    def to_model(self, values: Any) -> Any: ...


class IdentityUserCodec:
    """Default codec: the user is already a JSON-serializable value."""

    def to_values(self, user: Any) -> Any:
        return user

    def to_model(self, values: Any) -> Any:
        return values

    def to_model_with_verification(self, values: Any) -> Any:
        return values


@dataclass
class Credentials:
    token: Optional[str] = None
    correlation_id: Optional[str] = None


@dataclass
class SignInResult:
    correlation: CorrelationRecord
    token: Optional[str] = None


@dataclass
class AuthContext:
    """Per-call authentication state handed to request handlers."""

    authenticator: "RequestAuthenticator"
    credentials: Credentials
    sink: Optional[ResponseSink] = None
    user: Any = None
    correlation_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def sign_in(self, user: Any) -> SignInResult:
        return await self.authenticator.sign_in(self, user)

    def sign_out(self) -> None:
        self.authenticator.sign_out(self)


class RequestAuthenticator:
    """Resolve the caller's identity from a bearer token and correlation id.

    Every failure cause is collapsed into one ``AuthenticationError``; the
    cause only reaches the diagnostic channel when ``debug`` is set.
    """

    def __init__(
        self,
        codec: TokenCodec,
        lifecycle: CorrelationLifecycle,
        user_codec: Optional[UserCodec] = None,
        *,
        debug: bool = False,
    ) -> None:
        self.codec = codec
        self.lifecycle = lifecycle
        self.user_codec: UserCodec = user_codec or IdentityUserCodec()
        self.debug = debug

    async def _to_model(self, values: Any, *, verify: bool = False) -> Any:
        convert = self.user_codec.to_model
        if verify:
            convert = getattr(self.user_codec, "to_model_with_verification", None) or convert
        user = convert(values)
        if inspect.isawaitable(user):
            user = await user
        return user

    def _claim_values(self, user: Any) -> Any:
        values = self.user_codec.to_values(user)
        self.codec.ensure_serializable(values)
        return values

    def _collapse(self, exc: AuthFailure, auth: AuthContext) -> AuthenticationError:
        """Turn an internal failure cause into the one public error."""
        logger.warning(
            "auth_failed",
            reason=exc.reason,
            channel="request" if auth.sink is not None else "stream",
            correlation=auth.credentials.correlation_id,
        )
        error = AuthenticationError(GENERIC_AUTH_FAILURE)
        if self.debug:
            error.diagnostic = exc.reason
            if auth.sink is not None:
                auth.sink.add_diagnostic(exc.reason)
        return error

    async def resolve_identity(self, auth: AuthContext) -> Any:
        """Return the verified user, or None for an anonymous caller.

        Raises an ``AuthFailure`` subclass for every rejected token.
        """
        token = auth.credentials.token
        if not token:
            return None

        claims = self.codec.verify_with_correlation(token)

        presented = auth.credentials.correlation_id
        # Message streams carry no identifier channel; they skip binding
        # unless the caller supplied an identifier anyway.
        if auth.sink is not None or presented is not None:
            if presented is None or claims.correlation_id != presented:
                raise BindingMismatch()

        if not self.codec.needs_renewal(claims):
            user = await self._to_model(claims.user)
            auth.user = user
            return user

        if auth.sink is None:
            raise UnsafeToken()
        user = await self._to_model(claims.user, verify=True)
        values = self._claim_values(user)
        record = await self.lifecycle.renew(
            claims.correlation_id, claims.correlation_secret, auth
        )
        auth.user = user
        auth.sink.set_token(self.codec.sign_with_correlation(record.as_claim(), values))
        logger.info("token_renewed", correlation=record.id)
        return user

    async def authenticate(
        self, credentials: Credentials, sink: Optional[ResponseSink] = None
    ) -> AuthContext:
        auth = AuthContext(
            authenticator=self,
            credentials=credentials,
            sink=sink,
            correlation_id=credentials.correlation_id,
        )
        try:
            auth.user = await self.resolve_identity(auth)
        except AuthFailure as exc:
            auth.user = None
            raise self._collapse(exc, auth) from exc
        return auth

    async def sign_in(self, auth: AuthContext, user: Any) -> SignInResult:
        """Bind ``user`` to the caller's correlation.

        An unfamiliar correlation only gets its identifier sent back; the
        token is withheld until the client presents that identifier again.
        Losing a concurrent rotation fails like any other authentication.
        """
        values = self._claim_values(user)
        try:
            record = await self.lifecycle.register(auth.credentials.correlation_id, auth)
        except AuthFailure as exc:
            raise self._collapse(exc, auth) from exc
        auth.user = user
        auth.correlation_id = record.id

        if record.id != auth.credentials.correlation_id and auth.sink is not None:
            auth.sink.set_correlation_id(record.id)

        if record.is_unfamiliar:
            logger.info("sign_in_pending_confirmation", correlation=record.id)
            return SignInResult(correlation=record)

        token = self.codec.sign_with_correlation(record.as_claim(), values)
        if auth.sink is not None:
            auth.sink.set_token(token)
        logger.info("sign_in_completed", correlation=record.id)
        return SignInResult(correlation=record, token=token)

    def sign_out(self, auth: AuthContext) -> None:
        """Forget the user and tell the client to drop its token and identifier.

        The correlation record itself is kept; a later sign-in starts over
        from a fresh identifier.
        """
        logger.info("sign_out", correlation=auth.correlation_id)
        auth.user = None
        auth.correlation_id = None
        if auth.sink is not None:
            auth.sink.set_token("")
            auth.sink.clear_correlation_id()
