from collections.abc import Sequence
import logging
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)


class DatabaseService:
    """Thin asyncpg wrapper used by the chat store."""

    def __init__(self, dsn: str, bootstrap_schema_query: str | None = None) -> None:
        self._dsn = dsn
        self._bootstrap_schema_query = bootstrap_schema_query or ""
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        if self._pool is None:
            logger.info("creating database connection pool")
            self._pool = await asyncpg.create_pool(dsn=self._dsn, min_size=1, max_size=5)
            if self._bootstrap_schema_query.strip():
                logger.info("applying chat store schema")
                await self.execute(self._bootstrap_schema_query)

    async def disconnect(self) -> None:
        if self._pool is not None:
            logger.info("closing database connection pool")
            await self._pool.close()
            self._pool = None

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("database service is not connected")
        return self._pool

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        pool = self._require_pool()
        logger.debug("executing fetchrow", extra={"args_count": len(args)})
        async with pool.acquire() as connection:
            return await connection.fetchrow(query, *args)

    async def fetch(self, query: str, *args: Any) -> Sequence[asyncpg.Record]:
        pool = self._require_pool()
        logger.debug("executing fetch", extra={"args_count": len(args)})
        async with pool.acquire() as connection:
            return await connection.fetch(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        pool = self._require_pool()
        logger.debug("executing statement", extra={"args_count": len(args)})
        async with pool.acquire() as connection:
            return await connection.execute(query, *args)

