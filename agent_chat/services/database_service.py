from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
import logging
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)


class DatabaseService:
    """Thin asyncpg pool wrapper used by the chat and agent stores."""

    def __init__(
        self,
        dsn: str,
        reshape_schema_query: str | None = None,
        min_size: int = 1,
        max_size: int = 5,
    ) -> None:
        self._dsn = dsn
        self._reshape_schema_query = reshape_schema_query or ""
        self._min_size = min_size
        self._max_size = max(min_size, max_size)
        self._pool: asyncpg.Pool | None = None

    async def _initialize_connection(self, connection: asyncpg.Connection) -> None:
        if self._reshape_schema_query.strip():
            logger.debug("applying reshape schema query on fresh connection")
            await connection.execute(self._reshape_schema_query)

    async def connect(self) -> None:
        if self._pool is None:
            logger.info("creating chat database pool", extra={"min_size": self._min_size, "max_size": self._max_size})
            self._pool = await asyncpg.create_pool(
                dsn=self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                init=self._initialize_connection,
            )

    async def disconnect(self) -> None:
        if self._pool is not None:
            logger.info("closing chat database pool")
            await self._pool.close()
            self._pool = None

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._require_pool().acquire() as connection:
            return await connection.fetchrow(query, *args)

    async def fetch(self, query: str, *args: Any) -> Sequence[asyncpg.Record]:
        async with self._require_pool().acquire() as connection:
            return await connection.fetch(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        async with self._require_pool().acquire() as connection:
            return await connection.execute(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        async with self._require_pool().acquire() as connection:
            async with connection.transaction():
                yield connection

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("database service is not connected")
        return self._pool
