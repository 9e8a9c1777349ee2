from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis
from redis import Redis

from correlauth.logging import get_logger
from correlauth.storage.errors import StaleSecret
from correlauth.storage.models import CorrelationRecord, CorrelationState

logger = get_logger(__name__)


class RedisStore:
    """Correlation records kept as Redis hashes.

    Each record lives at ``correlation:<id>`` with ``secret`` and ``state``
    fields. Secret rotation runs as a Lua script so the compare and the write
    happen atomically on the server. With ``confirm_on_fetch`` a record looked
    up by its identifier is marked ESTABLISHED, as in ``MemoryStore``.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Returns 1 on swap, 0 when the stored secret moved on, -1 when missing
    _COMPARE_AND_SWAP_SCRIPT = """
local key = KEYS[1]
local expected = ARGV[1]
local secret = ARGV[2]
local state = ARGV[3]

if redis.call('EXISTS', key) == 0 then
  return -1
end

local current = redis.call('HGET', key, 'secret')
if current == false then
  current = ''
end
if current ~= expected then
  return 0
end

redis.call('HSET', key, 'secret', secret, 'state', state)
return 1
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        record_ttl_seconds: Optional[int] = None,
        confirm_on_fetch: bool = True,
    ):
        self.redis_url = redis_url
        self.confirm_on_fetch = confirm_on_fetch
        self.record_ttl_seconds = record_ttl_seconds
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._compare_and_swap = self.client.register_script(self._COMPARE_AND_SWAP_SCRIPT)

    @staticmethod
    def _key(correlation_id: str) -> str:
        return f"correlation:{correlation_id}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client keeps the async client off a temporary loop.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def create(self, auth: Any = None) -> CorrelationRecord:
        record = CorrelationRecord.new()
        key = self._key(record.id)
        pipe = self.client.pipeline()
        pipe.hset(key, mapping={"secret": record.secret, "state": record.state.value})
        if self.record_ttl_seconds:
            pipe.expire(key, self.record_ttl_seconds)
        await pipe.execute()
        return record

    async def fetch(self, correlation_id: str, auth: Any = None) -> Optional[CorrelationRecord]:
        data = await self.client.hgetall(self._key(correlation_id))
        if not data:
            return None
        try:
            state = CorrelationState(data.get("state", CorrelationState.UNFAMILIAR.value))
        except ValueError:
            logger.warning("correlation_state_invalid", correlation=correlation_id)
            return None
        if state is CorrelationState.UNFAMILIAR and self.confirm_on_fetch:
            state = CorrelationState.ESTABLISHED
            await self.client.hset(self._key(correlation_id), "state", state.value)
        return CorrelationRecord(id=correlation_id, secret=data.get("secret", ""), state=state)

    async def update(
        self,
        correlation_id: str,
        secret: str,
        auth: Any = None,
        *,
        expected_secret: str,
    ) -> CorrelationRecord:
        key = self._key(correlation_id)
        result = int(
            await self._compare_and_swap(
                keys=[key],
                args=[expected_secret, secret, CorrelationState.ESTABLISHED.value],
            )
        )
        if result < 0:
            raise StaleSecret("correlation not found", {"correlation": correlation_id})
        if result == 0:
            raise StaleSecret("correlation secret changed", {"correlation": correlation_id})
        if self.record_ttl_seconds:
            await self.client.expire(key, self.record_ttl_seconds)
        return CorrelationRecord(
            id=correlation_id, secret=secret, state=CorrelationState.ESTABLISHED
        )

    async def close(self) -> None:
        await self.client.aclose()
