"""SQLite driver (aiosqlite).

aiosqlite has no pool of its own; connections are kept in an
``asyncio.Queue``. An in-memory database exists per connection, so
``:memory:`` always gets a single shared connection.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from tablespine.settings import ConnectionConfig, DialectName
from tablespine.types import QueryResult

from .base import Driver, DriverConnection


class AiosqliteConnection(DriverConnection):
    """Wraps an ``aiosqlite.Connection`` opened with ``isolation_level=None``."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    @property
    def raw(self) -> aiosqlite.Connection:
        return self._conn

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        async with self._conn.execute(sql, tuple(params)) as cursor:
            rows = [dict(row) for row in await cursor.fetchall()]
            count = len(rows) if rows else max(cursor.rowcount, 0)
            return QueryResult(rows=rows, row_count=count, last_insert_id=cursor.lastrowid or None)

    async def begin(self) -> None:
        await self._conn.execute("BEGIN")

    async def commit(self) -> None:
        await self._conn.execute("COMMIT")

    async def rollback(self) -> None:
        await self._conn.execute("ROLLBACK")


class SQLiteDriver(Driver):
    """SQLite driver; ``database`` is the file path or ``:memory:``."""

    dialect = DialectName.SQLITE

    def __init__(self, config: ConnectionConfig):
        super().__init__(config)
        self._idle: asyncio.Queue[aiosqlite.Connection] | None = None
        self._all: list[aiosqlite.Connection] = []

    @property
    def is_memory(self) -> bool:
        return self._config.database in ("", ":memory:") or "mode=memory" in self._config.database

    @property
    def size(self) -> int:
        return 1 if self.is_memory else max(self._config.max_pool_size, 1)

    async def _open(self) -> None:
        self._idle = asyncio.Queue()
        for _ in range(self.size):
            conn = await aiosqlite.connect(
                self._config.database or ":memory:",
                isolation_level=None,
                timeout=self._config.connect_timeout,
                **self._config.options,
            )
            conn.row_factory = aiosqlite.Row
            self._all.append(conn)
            self._idle.put_nowait(conn)

    async def _close(self) -> None:
        for conn in self._all:
            await conn.close()
        self._all.clear()
        self._idle = None

    @asynccontextmanager
    async def _checkout(self) -> AsyncIterator[DriverConnection]:
        queue = self._idle
        conn = await queue.get()
        try:
            yield AiosqliteConnection(conn)
        finally:
            queue.put_nowait(conn)


__all__ = [
    "AiosqliteConnection",
    "SQLiteDriver",
]
