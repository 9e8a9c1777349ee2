from __future__ import annotations

import hmac
import threading
from typing import Any, Dict, Optional

from correlauth.logging import get_logger
from correlauth.storage.errors import StaleSecret
from correlauth.storage.models import CorrelationRecord, CorrelationState


class MemoryStore:
    """In-process correlation store for tests and single-worker deployments.

    With ``confirm_on_fetch`` a record looked up by its identifier counts as
    confirmed: the client echoed the identifier back, completing the round
    trip, so the record is reported (and kept) ESTABLISHED from then on.
    """

    def __init__(self, *, confirm_on_fetch: bool = True) -> None:
        self.logger = get_logger(__name__)
        self.confirm_on_fetch = confirm_on_fetch
        self.correlations: Dict[str, CorrelationRecord] = {}
        # Guards check-and-set in update() against threads sharing the store
        self._data_lock = threading.RLock()

    async def create(self, auth: Any = None) -> CorrelationRecord:
        record = CorrelationRecord.new()
        with self._data_lock:
            self.correlations[record.id] = record
        self.logger.debug("correlation_created", correlation=record.id)
        return record

    async def fetch(self, correlation_id: str, auth: Any = None) -> Optional[CorrelationRecord]:
        with self._data_lock:
            record = self.correlations.get(correlation_id)
            if record is not None and record.is_unfamiliar and self.confirm_on_fetch:
                record = CorrelationRecord(
                    id=record.id, secret=record.secret, state=CorrelationState.ESTABLISHED
                )
                self.correlations[correlation_id] = record
                self.logger.debug("correlation_confirmed", correlation=correlation_id)
            return record

    async def update(
        self,
        correlation_id: str,
        secret: str,
        auth: Any = None,
        *,
        expected_secret: str,
    ) -> CorrelationRecord:
        with self._data_lock:
            current = self.correlations.get(correlation_id)
            if current is None:
                raise StaleSecret("correlation not found", {"correlation": correlation_id})
            if not hmac.compare_digest(current.secret.encode(), expected_secret.encode()):
                raise StaleSecret("correlation secret changed", {"correlation": correlation_id})
            updated = current.rotated(secret)
            self.correlations[correlation_id] = updated
            return updated

    def put(self, record: CorrelationRecord) -> CorrelationRecord:
        """Insert or replace a record directly; used to seed fixtures."""
        with self._data_lock:
            self.correlations[record.id] = record
            return record
