from __future__ import annotations

import base64
import binascii
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from correlauth.config import DEFAULT_TOKEN_LIFETIME, Settings
from correlauth.logging import get_logger
from correlauth.service.errors import (
    ConfigurationError,
    InvalidSignature,
    MalformedToken,
    TokenExpired,
)

logger = get_logger(__name__)

# Elapsed lifetime after which a still-valid token is replaced
RENEWAL_THRESHOLD = 60 * 60


class SigningAlgorithm(str, Enum):
    HS256 = "HS256"
    RS256 = "RS256"


# Verification accepts both so deployments can move between key schemes
ACCEPTED_ALGORITHMS = [SigningAlgorithm.HS256.value, SigningAlgorithm.RS256.value]


@dataclass(frozen=True)
class SharedSecret:
    secret: str
    algorithm: SigningAlgorithm = field(default=SigningAlgorithm.HS256, init=False)

    @property
    def signing_key(self) -> str:
        return self.secret

    @property
    def verifying_key(self) -> str:
        return self.secret


@dataclass(frozen=True)
class KeyPair:
    private_pem: bytes
    public_pem: bytes
    algorithm: SigningAlgorithm = field(default=SigningAlgorithm.RS256, init=False)

    @classmethod
    def from_private_pem(cls, private_pem: bytes) -> "KeyPair":
        """Derive the public half from a PEM private key."""
        try:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("PRIVATE_KEY is not a usable PEM private key") from exc
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ConfigurationError("PRIVATE_KEY must be an RSA key")
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return cls(private_pem=private_pem, public_pem=public_pem)

    @property
    def signing_key(self) -> bytes:
        return self.private_pem

    @property
    def verifying_key(self) -> bytes:
        return self.public_pem


SigningIdentity = Union[SharedSecret, KeyPair]


def generate_key() -> str:
    """Return a new RSA private key as base64-encoded PKCS#1 PEM.

    This is the format read from ``PRIVATE_KEY``.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(pem).decode("ascii")


def signing_identity_from_settings(settings: Settings) -> SigningIdentity:
    """Pick the signing identity once at startup; a private key wins over a secret."""
    if settings.private_key:
        try:
            pem = base64.b64decode(settings.private_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("PRIVATE_KEY must be base64 encoded") from exc
        logger.info("signing_identity_selected", algorithm=SigningAlgorithm.RS256.value)
        return KeyPair.from_private_pem(pem)
    if settings.jwt_secret:
        logger.info("signing_identity_selected", algorithm=SigningAlgorithm.HS256.value)
        return SharedSecret(settings.jwt_secret)
    raise ConfigurationError("PRIVATE_KEY or JWT_SECRET least one is required")


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a correlation-bound token."""

    correlation_id: Optional[str]
    correlation_secret: Optional[str]
    user: Any
    exp: int
    raw: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TokenClaims":
        correlation = payload.get("correlation")
        if correlation is not None and not isinstance(correlation, Mapping):
            raise MalformedToken("jwt correlation claim malformed")
        correlation = correlation or {}
        correlation_id = correlation.get("id")
        return cls(
            correlation_id=None if correlation_id is None else str(correlation_id),
            correlation_secret=correlation.get("secret"),
            user=payload.get("user"),
            exp=int(payload["exp"]),
            raw=dict(payload),
        )


class TokenCodec:
    """Sign and verify JWTs with a fixed signing identity and claim defaults."""

    def __init__(
        self,
        identity: SigningIdentity,
        *,
        expires_in: int = DEFAULT_TOKEN_LIFETIME,
        issuer: str = "jwt",
        subject: str = "jwt",
        audience: str = "everyone",
        leeway: int = 0,
    ) -> None:
        self.identity = identity
        self.expires_in = expires_in
        self.issuer = issuer
        self.subject = subject
        self.audience = audience
        self.leeway = leeway

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            signing_identity_from_settings(settings),
            expires_in=settings.jwt_expires_in,
            issuer=settings.jwt_issuer,
            subject=settings.jwt_subject,
            audience=settings.jwt_audience,
        )

    @property
    def algorithm(self) -> SigningAlgorithm:
        return self.identity.algorithm

    def sign(
        self,
        claims: Mapping[str, Any],
        *,
        expires_in: Optional[int] = None,
        issuer: Optional[str] = None,
        subject: Optional[str] = None,
        audience: Optional[str] = None,
    ) -> str:
        """Sign ``claims`` plus the standard claims.

        Raises ``TypeError`` when the claims are not JSON serializable.
        """
        now = int(time.time())
        lifetime = self.expires_in if expires_in is None else expires_in
        payload = dict(claims)
        payload.update(
            {
                "iat": now,
                "exp": now + lifetime,
                "iss": issuer or self.issuer,
                "sub": subject or self.subject,
                "aud": audience or self.audience,
            }
        )
        return jwt.encode(
            payload, self.identity.signing_key, algorithm=self.algorithm.value
        )

    def verify(
        self,
        token: str,
        *,
        issuer: Optional[str] = None,
        subject: Optional[str] = None,
        audience: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return the verified payload or raise a ``TokenError`` subclass."""
        try:
            payload = jwt.decode(
                token,
                self.identity.verifying_key,
                algorithms=ACCEPTED_ALGORITHMS,
                audience=audience or self.audience,
                issuer=issuer or self.issuer,
                leeway=self.leeway,
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except jwt.InvalidSignatureError as exc:
            raise InvalidSignature() from exc
        except jwt.DecodeError as exc:
            raise MalformedToken() from exc
        except jwt.InvalidAudienceError as exc:
            raise InvalidSignature("jwt audience invalid") from exc
        except jwt.InvalidIssuerError as exc:
            raise InvalidSignature("jwt issuer invalid") from exc
        except jwt.MissingRequiredClaimError as exc:
            raise MalformedToken("jwt missing required claim") from exc
        except jwt.PyJWTError as exc:
            # Algorithm/key confusion lands here (InvalidKeyError, InvalidAlgorithmError)
            raise InvalidSignature() from exc
        if payload.get("sub") != (subject or self.subject):
            raise InvalidSignature("jwt subject invalid")
        return payload

    def ensure_serializable(self, values: Any) -> None:
        """Raise ``TypeError`` for claim values ``sign`` would reject."""
        json.dumps(values)

    def sign_with_correlation(
        self,
        correlation: Mapping[str, Any],
        user: Any,
        **options: Any,
    ) -> str:
        return self.sign({"correlation": dict(correlation), "user": user}, **options)

    def verify_with_correlation(self, token: str, **options: Any) -> TokenClaims:
        return TokenClaims.from_payload(self.verify(token, **options))

    def needs_renewal(self, claims: TokenClaims, now: Optional[float] = None) -> bool:
        """True once more than RENEWAL_THRESHOLD of the lifetime has elapsed."""
        current = time.time() if now is None else now
        remaining = claims.exp - current
        return remaining < self.expires_in - RENEWAL_THRESHOLD
