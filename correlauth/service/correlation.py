from __future__ import annotations

import hmac
import secrets
from typing import Any, Callable, Optional, Protocol

from correlauth.logging import get_logger
from correlauth.service.errors import SecretMismatch
from correlauth.storage.errors import StaleSecret
from correlauth.storage.models import CorrelationRecord

logger = get_logger(__name__)


class CorrelationStore(Protocol):
    """Durable correlation storage.

    ``update`` must be a compare-and-swap on ``expected_secret`` and raise
    ``StaleSecret`` when the stored secret no longer matches. When a fetched
    record stops being UNFAMILIAR is the store's confirmation policy.
    """

    async def create(self, auth: Any = None) -> CorrelationRecord: ...

    async def fetch(
        self, correlation_id: str, auth: Any = None
    ) -> Optional[CorrelationRecord]: ...

    async def update(
        self,
        correlation_id: str,
        secret: str,
        auth: Any = None,
        *,
        expected_secret: str,
    ) -> CorrelationRecord: ...


def generate_secret() -> str:
    return secrets.token_urlsafe(32)


def _secrets_match(stored: str, presented: Optional[str]) -> bool:
    if presented is None:
        return False
    return hmac.compare_digest(stored.encode(), presented.encode())


class CorrelationLifecycle:
    """Declare, register and renew correlation records.

    State per identifier moves Unknown -> UNFAMILIAR -> ESTABLISHED. Every
    rotation goes through the store's compare-and-swap, so of two callers
    presenting the same secret at most one receives the next one.
    """

    def __init__(
        self,
        store: CorrelationStore,
        *,
        secret_factory: Callable[[], str] = generate_secret,
    ) -> None:
        self.store = store
        self.secret_factory = secret_factory

    async def declare(
        self, correlation_id: Optional[str], auth: Any = None
    ) -> CorrelationRecord:
        if correlation_id:
            record = await self.store.fetch(correlation_id, auth)
            if record is not None:
                return record
            logger.info("correlation_unknown", correlation=correlation_id)
        record = await self.store.create(auth)
        logger.info("correlation_declared", correlation=record.id)
        return record

    async def register(
        self, correlation_id: Optional[str], auth: Any = None
    ) -> CorrelationRecord:
        record = await self.declare(correlation_id, auth)
        if record.is_unfamiliar:
            return record
        return await self._rotate(record.id, record.secret, auth)

    async def renew(
        self, correlation_id: str, secret: Optional[str], auth: Any = None
    ) -> CorrelationRecord:
        record = await self.store.fetch(correlation_id, auth)
        if record is None or not _secrets_match(record.secret, secret):
            logger.warning(
                "correlation_secret_mismatch",
                correlation=correlation_id,
                known=record is not None,
            )
            raise SecretMismatch()
        return await self._rotate(record.id, record.secret, auth)

    async def _rotate(
        self, correlation_id: str, expected_secret: str, auth: Any
    ) -> CorrelationRecord:
        try:
            updated = await self.store.update(
                correlation_id,
                self.secret_factory(),
                auth,
                expected_secret=expected_secret,
            )
        except StaleSecret as exc:
            logger.warning(
                "correlation_rotation_conflict",
                correlation=correlation_id,
                message=exc.message,
            )
            raise SecretMismatch() from exc
        logger.info("correlation_rotated", correlation=correlation_id)
        return updated
