"""
PostgreSQL persistence layer for the CEP cache.
"""

from typing import Optional
from datetime import datetime

import asyncpg
from shared.logging import get_logger
from shared.errors import StoreNotStartedError, StoreStartupError
from ..lookup.models import CacheEntry


class PostgresCepStore:
    """PostgreSQL-backed cache table keyed by normalized CEP."""

    def __init__(self, dsn: str, table_name: str = "ceps", command_timeout: float = 30):
        self.dsn = dsn
        self.table_name = table_name
        self.command_timeout = command_timeout
        self.logger = get_logger("cep.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and make sure the cache table exists."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                max_inactive_connection_lifetime=30 * 60,
                command_timeout=self.command_timeout
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started", table=self.table_name)

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            if self.pool is not None:
                await self.pool.close()
                self.pool = None
            raise StoreStartupError(str(e)) from e

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        async with self._acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    cep TEXT PRIMARY KEY,
                    payload JSONB NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                );
            """)

    async def read(self, key: str) -> Optional[CacheEntry]:
        """Return the cached row for ``key``, or None when there is none."""
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT payload, updated_at FROM {self.table_name} WHERE cep = $1",
                key
            )

        if row is None:
            return None

        payload = row["payload"]
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return CacheEntry(key=key, payload=payload, updated_at=row["updated_at"])

    async def upsert(self, key: str, payload: bytes, updated_at: datetime) -> None:
        """Insert or overwrite the row for ``key``."""
        async with self._acquire() as conn:
            await conn.execute(f"""
                INSERT INTO {self.table_name} (cep, payload, updated_at)
                VALUES ($1, $2, $3)
                ON CONFLICT (cep)
                DO UPDATE SET payload = EXCLUDED.payload, updated_at = EXCLUDED.updated_at
            """, key, payload.decode("utf-8"), updated_at)

        self.logger.debug("Cep cached", cep=key)

    async def ping(self) -> None:
        """Round-trip a trivial query."""
        async with self._acquire() as conn:
            await conn.fetchval("SELECT 1")

    def _acquire(self):
        if self.pool is None:
            raise StoreNotStartedError()
        return self.pool.acquire()
