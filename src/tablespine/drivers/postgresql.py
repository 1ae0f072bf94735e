"""PostgreSQL driver (asyncpg)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from tablespine.settings import ConnectionConfig, DialectName
from tablespine.types import QueryResult

from .base import Driver, DriverConnection


def _status_count(status: str | None, fallback: int) -> int:
    """Affected-row count from a command tag such as ``UPDATE 3`` or ``INSERT 0 2``."""
    if not status:
        return fallback
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else fallback


class AsyncpgConnection(DriverConnection):
    """Wraps an ``asyncpg.Connection`` checked out of the pool."""

    def __init__(self, conn: asyncpg.Connection, timeout: float | None = None):
        self._conn = conn
        self._timeout = timeout

    @property
    def raw(self) -> asyncpg.Connection:
        return self._conn

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        stmt = await self._conn.prepare(sql, timeout=self._timeout)
        records = await stmt.fetch(*params, timeout=self._timeout)
        rows = [dict(record) for record in records]
        return QueryResult(rows=rows, row_count=_status_count(stmt.get_statusmsg(), len(rows)))

    async def begin(self) -> None:
        await self._conn.execute("BEGIN")

    async def commit(self) -> None:
        await self._conn.execute("COMMIT")

    async def rollback(self) -> None:
        await self._conn.execute("ROLLBACK")


class PostgreSQLDriver(Driver):
    """
    PostgreSQL driver backed by an ``asyncpg`` pool.

    Example:
        driver = PostgreSQLDriver(ConnectionConfig(
            dialect="postgresql", host="localhost", database="app", user="app",
        ))
        async with driver.acquire() as conn:
            result = await conn.execute("SELECT 1 AS one")
    """

    dialect = DialectName.POSTGRESQL

    def __init__(self, config: ConnectionConfig):
        super().__init__(config)
        self._pool: asyncpg.Pool | None = None

    async def _open(self) -> None:
        cfg = self._config
        self._pool = await asyncpg.create_pool(
            host=cfg.host or "localhost",
            port=cfg.port or cfg.default_port(),
            user=cfg.user,
            password=cfg.password,
            database=cfg.database,
            min_size=min(cfg.min_pool_size, cfg.max_pool_size),
            max_size=cfg.max_pool_size,
            timeout=cfg.connect_timeout,
            command_timeout=cfg.query_timeout,
            **cfg.options,
        )

    async def _close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _checkout(self) -> AsyncIterator[DriverConnection]:
        async with self._pool.acquire(timeout=self._config.connect_timeout) as conn:
            yield AsyncpgConnection(conn, self._config.query_timeout)


__all__ = [
    "AsyncpgConnection",
    "PostgreSQLDriver",
]
