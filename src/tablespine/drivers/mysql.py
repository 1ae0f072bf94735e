"""MySQL driver (aiomysql)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import aiomysql

from tablespine.settings import ConnectionConfig, DialectName
from tablespine.types import QueryResult

from .base import Driver, DriverConnection


class AiomysqlConnection(DriverConnection):
    """Wraps an ``aiomysql.Connection``; the pool runs in autocommit mode."""

    def __init__(self, conn: aiomysql.Connection):
        self._conn = conn

    @property
    def raw(self) -> aiomysql.Connection:
        return self._conn

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        # Always pass a tuple: literal % was doubled for %-formatting
        async with self._conn.cursor(aiomysql.DictCursor) as cur:
            await cur.execute(sql, tuple(params))
            rows = list(await cur.fetchall()) if cur.description else []
            return QueryResult(
                rows=rows,
                row_count=max(cur.rowcount, 0),
                last_insert_id=cur.lastrowid or None,
            )

    async def begin(self) -> None:
        await self._conn.begin()

    async def commit(self) -> None:
        await self._conn.commit()

    async def rollback(self) -> None:
        await self._conn.rollback()


class MySQLDriver(Driver):
    """MySQL / MariaDB driver backed by an ``aiomysql`` pool."""

    dialect = DialectName.MYSQL

    def __init__(self, config: ConnectionConfig):
        super().__init__(config)
        self._pool: aiomysql.Pool | None = None

    async def _open(self) -> None:
        cfg = self._config
        self._pool = await aiomysql.create_pool(
            host=cfg.host or "localhost",
            port=cfg.port or cfg.default_port(),
            user=cfg.user,
            password=cfg.password or "",
            db=cfg.database,
            minsize=min(cfg.min_pool_size, cfg.max_pool_size),
            maxsize=cfg.max_pool_size,
            connect_timeout=cfg.connect_timeout,
            autocommit=True,
            **cfg.options,
        )

    async def _close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    @asynccontextmanager
    async def _checkout(self) -> AsyncIterator[DriverConnection]:
        async with self._pool.acquire() as conn:
            yield AiomysqlConnection(conn)


__all__ = [
    "AiomysqlConnection",
    "MySQLDriver",
]
