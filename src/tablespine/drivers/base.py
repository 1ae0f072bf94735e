"""Driver base classes.

Manifesto:
    The transaction manager never talks to asyncpg, aiomysql or aiosqlite
    directly. A :class:`Driver` owns one pool and hands out
    :class:`DriverConnection` objects through a scoped ``acquire()``, so a
    connection goes back to the pool on every exit path, cancellation
    included.

Features:
    - Abstract ``connect()`` / ``close()`` pool lifecycle
    - ``acquire()`` async context manager yielding a ``DriverConnection``
    - ``DriverConnection.execute()`` returning a driver-neutral ``QueryResult``
    - Explicit ``begin()`` / ``commit()`` / ``rollback()``

Tags:
    tablespine, database, abstract-base, driver-pattern

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from tablespine.logging import get_logger
from tablespine.settings import ConnectionConfig, DialectName
from tablespine.types import QueryResult

logger = get_logger(__name__)


class DriverConnection(ABC):
    """One checked-out connection.

    SQL arrives with native placeholders already rendered; ``params`` are
    positional and already adapted by the dialect.
    """

    @abstractmethod
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        """Run one statement and return its rows, affected count and insert id."""
        ...

    @abstractmethod
    async def begin(self) -> None:
        ...

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


class Driver(ABC):
    """
    Abstract base class for pooled database drivers.

    Provides the common lifecycle and defines the interface every
    dialect-specific driver implements.
    """

    dialect: DialectName

    def __init__(self, config: ConnectionConfig):
        self._config = config
        self._connected = False

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        """Whether the pool is open."""
        return self._connected

    async def connect(self) -> None:
        """Open the pool. Calling it on an open pool is a no-op."""
        if self._connected:
            return
        await self._open()
        self._connected = True
        logger.info(
            "pool_opened",
            dialect=self.dialect.value,
            dsn=self._config.to_dsn(),
            max_pool_size=self._config.max_pool_size,
        )

    async def close(self) -> None:
        """Close the pool and every idle connection."""
        if not self._connected:
            return
        await self._close()
        self._connected = False
        logger.info("pool_closed", dialect=self.dialect.value, dsn=self._config.to_dsn())

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[DriverConnection]:
        """Check out a connection for the duration of the block."""
        if not self._connected:
            await self.connect()
        async with self._checkout() as conn:
            yield conn

    @abstractmethod
    async def _open(self) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    def _checkout(self) -> Any:
        """Async context manager yielding a :class:`DriverConnection`."""
        ...

    async def __aenter__(self) -> Driver:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._config.to_dsn()!r})"


__all__ = [
    "Driver",
    "DriverConnection",
]
