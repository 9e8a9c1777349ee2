from __future__ import annotations

import asyncio
from typing import Any, Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from correlauth.logging import get_logger
from correlauth.storage.errors import StaleSecret
from correlauth.storage.models import CorrelationRecord, CorrelationState


class PostgresStore:
    """Postgres-backed correlation store.

    The driver is synchronous; each operation runs in a worker thread so the
    event loop is never blocked on the database. With ``confirm_on_fetch`` a
    lookup by identifier also marks the row ESTABLISHED, as in ``MemoryStore``.
    """

    def __init__(self, dsn: str, *, confirm_on_fetch: bool = True) -> None:
        self.dsn = dsn
        self.confirm_on_fetch = confirm_on_fetch
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_correlation_table()

    def _connect(self):
        return self.pool.connection()

    def _ensure_correlation_table(self) -> None:
        """Create the ``auth_correlation`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_correlation (
                    id TEXT PRIMARY KEY,
                    secret TEXT NOT NULL DEFAULT '',
                    state TEXT NOT NULL DEFAULT 'unfamiliar',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    @staticmethod
    def _row_to_record(row: dict) -> CorrelationRecord:
        return CorrelationRecord(
            id=row["id"],
            secret=row.get("secret") or "",
            state=CorrelationState(row["state"]),
        )

    def _insert(self, record: CorrelationRecord) -> CorrelationRecord:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO auth_correlation (id, secret, state) VALUES (%s, %s, %s)",
                (record.id, record.secret, record.state.value),
            )
        return record

    def _select(self, correlation_id: str) -> Optional[CorrelationRecord]:
        with self._connect() as conn:
            if self.confirm_on_fetch:
                row = conn.execute(
                    """
                    UPDATE auth_correlation
                    SET state = %s,
                        updated_at = CASE WHEN state = %s THEN updated_at ELSE now() END
                    WHERE id = %s
                    RETURNING id, secret, state
                    """,
                    (
                        CorrelationState.ESTABLISHED.value,
                        CorrelationState.ESTABLISHED.value,
                        correlation_id,
                    ),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT id, secret, state FROM auth_correlation WHERE id = %s",
                    (correlation_id,),
                ).fetchone()
        if not row:
            return None
        return self._row_to_record(row)

    def _compare_and_swap(
        self, correlation_id: str, secret: str, expected_secret: str
    ) -> CorrelationRecord:
        # Single conditional UPDATE: the row lock serializes concurrent rotations
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE auth_correlation
                SET secret = %s, state = %s, updated_at = now()
                WHERE id = %s AND secret = %s
                RETURNING id, secret, state
                """,
                (secret, CorrelationState.ESTABLISHED.value, correlation_id, expected_secret),
            ).fetchone()
        if not row:
            raise StaleSecret(
                "correlation secret changed or record missing",
                {"correlation": correlation_id},
            )
        return self._row_to_record(row)

    async def create(self, auth: Any = None) -> CorrelationRecord:
        return await asyncio.to_thread(self._insert, CorrelationRecord.new())

    async def fetch(self, correlation_id: str, auth: Any = None) -> Optional[CorrelationRecord]:
        return await asyncio.to_thread(self._select, correlation_id)

    async def update(
        self,
        correlation_id: str,
        secret: str,
        auth: Any = None,
        *,
        expected_secret: str,
    ) -> CorrelationRecord:
        return await asyncio.to_thread(
            self._compare_and_swap, correlation_id, secret, expected_secret
        )

    async def close(self) -> None:
        await asyncio.to_thread(self.pool.close)
