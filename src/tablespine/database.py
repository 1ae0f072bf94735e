"""
Connection and transaction manager.

A :class:`Database` owns the reader and writer pools of one logical
database and decides, per statement, which connection runs it.

Manifesto:
    Connection choice is never left to the caller. Inside a transaction
    every statement runs on the bound connection; right after a commit,
    reads go to the writer until replicas catch up; otherwise reads go
    to the reader pool. Writes only ever happen inside an explicit
    ``transaction()`` unless the caller opts out with ``autocommit=True``.

Architecture:
    ::

        Connection selection (evaluated per statement)
        ┌────────────────────────────────────────────────────────────┐
        │ 1. bound transaction connection     (transaction())        │
        │ 2. bound writer, read-only          (with_writer())        │
        │ 3. writer pool inside sticky window (after a commit)       │
        │ 4. reader pool                                             │
        └────────────────────────────────────────────────────────────┘

        State per logical database (request-scoped via contextvars)
        Idle ──transaction()──► depth=1 ──transaction()──► depth=2 (SAVEPOINT sp_2)
          ▲                        │  commit                  │ release / rollback to
          │                        ▼                          ▼
          └──── WriterSticky(until t) ◄───────────────── depth=1

Examples:
    >>> db = Database(TableSpineSettings(connection={"dialect": "sqlite"}))
    >>> async with db:
    ...     async def work():
    ...         await db.execute("INSERT INTO users (name) VALUES (?)", ["ada"])
    ...         return await db.execute("SELECT COUNT(*) AS n FROM users")
    ...     result = await db.transaction(work)

Guardrails:
    ❌ DON'T: Hold a connection from ``acquire()`` across a ``transaction()`` call
    ✅ DO: Let the manager bind and release connections

    ❌ DON'T: Retry conflicts inside a nested ``transaction()``
    ✅ DO: Rely on the outermost call; it re-runs the whole callback

Tags:
    database, transactions, savepoints, routing, retry, tablespine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from itertools import count
from typing import Any, TypeVar

from tablespine.builder import SqlBuilder
from tablespine.context import current_request
from tablespine.dialect import Dialect, get_dialect
from tablespine.drivers import Driver, DriverConnection, create_driver
from tablespine.errors import ReadOnlyContextError, WriteOutsideTransactionError
from tablespine.logging import get_logger
from tablespine.settings import TableSpineSettings
from tablespine.types import QueryResult, Statement, TransactionOptions

logger = get_logger(__name__)

T = TypeVar("T")

_WRITE_VERBS = frozenset(
    {"INSERT", "UPDATE", "DELETE", "REPLACE", "MERGE", "CREATE", "ALTER", "DROP", "TRUNCATE", "UPSERT"}
)
_LEADING_NOISE = re.compile(r"^(\s+|--[^\n]*\n?|/\*.*?\*/|\()+", re.DOTALL)
_DML_IN_CTE = re.compile(r"\b(INSERT|UPDATE|DELETE|MERGE)\b", re.IGNORECASE)
_ids = count(1)


def is_write_statement(sql: str) -> bool:
    """Classify raw SQL by its leading keyword (``WITH`` counts when it wraps DML)."""
    body = _LEADING_NOISE.sub("", sql, count=1)
    verb = body.split(None, 1)[0].upper() if body.strip() else ""
    if verb == "WITH":
        return bool(_DML_IN_CTE.search(body))
    return verb in _WRITE_VERBS


@dataclass(frozen=True)
class _Binding:
    """Connection bound to the current context.

    ``depth`` is the transaction nesting level (0 for a bare ``with_writer``).
    """

    connection: DriverConnection
    depth: int
    readonly: bool = False


class Database:
    """
    Reader/writer pools plus the transaction state machine for one logical database.

    Args:
        settings: Runtime settings; ``connection`` describes the reader pool,
            ``writer`` the writer pool (defaults to the reader pool).
        name: Logical name, used to key the writer-sticky window.
        reader: Pre-built reader driver (tests, custom drivers).
        writer: Pre-built writer driver; defaults to ``reader`` when only
            a reader is given.
    """

    def __init__(
        self,
        settings: TableSpineSettings | None = None,
        *,
        name: str | None = None,
        reader: Driver | None = None,
        writer: Driver | None = None,
    ):
        self.settings = settings or TableSpineSettings()
        self.name = name or f"db{next(_ids)}"
        self._dialect: Dialect = get_dialect(self.settings.connection.dialect)
        self._builder = SqlBuilder(self._dialect)

        self._reader = reader or create_driver(self.settings.connection)
        if writer is not None:
            self._writer = writer
        elif reader is None and self.settings.writer is not None:
            self._writer = create_driver(self.settings.writer)
        else:
            self._writer = self._reader

        self._binding: ContextVar[_Binding | None] = ContextVar(
            f"tablespine_binding_{self.name}", default=None
        )

    @classmethod
    def from_settings(cls, settings: TableSpineSettings, *, name: str | None = None) -> Database:
        return cls(settings, name=name)

    # -- Properties ----------------------------------------------------------

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def builder(self) -> SqlBuilder:
        return self._builder

    @property
    def reader(self) -> Driver:
        return self._reader

    @property
    def writer(self) -> Driver:
        return self._writer

    @property
    def transaction_depth(self) -> int:
        binding = self._binding.get()
        return binding.depth if binding is not None else 0

    @property
    def is_in_transaction(self) -> bool:
        return self.transaction_depth > 0

    @property
    def in_writer_context(self) -> bool:
        binding = self._binding.get()
        return binding is not None and binding.readonly

    # -- Lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        await self._reader.connect()
        if self._writer is not self._reader:
            await self._writer.connect()

    async def close(self) -> None:
        if self._writer is not self._reader:
            await self._writer.close()
        await self._reader.close()

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # -- Execution -----------------------------------------------------------

    def check_write(self, operation: str, model_name: str | None = None, *, autocommit: bool = False) -> None:
        """Apply the write policy for the current context.

        Raises:
            ReadOnlyContextError: Inside ``with_writer()``.
            WriteOutsideTransactionError: No transaction and no ``autocommit``.
        """
        binding = self._binding.get()
        if binding is not None and binding.readonly:
            raise ReadOnlyContextError(operation=operation, model_name=model_name)
        if binding is None and not autocommit and self.settings.require_transaction_for_writes:
            raise WriteOutsideTransactionError(operation=operation, model_name=model_name)

    async def run(
        self,
        statement: Statement,
        *,
        write: bool = False,
        operation: str = "execute",
        model_name: str | None = None,
        autocommit: bool = False,
    ) -> QueryResult:
        """Execute a builder statement (``?`` markers) on the routed connection."""
        if write:
            self.check_write(operation, model_name, autocommit=autocommit)
        sql = self._dialect.convert_placeholders(statement.sql)
        async with self._connection(write) as conn:
            start = time.perf_counter()
            result = await conn.execute(sql, statement.params)
        logger.debug(
            "sql_executed",
            database=self.name,
            dialect=self._dialect.name,
            operation=operation,
            sql=sql,
            params=len(statement.params),
            rows=result.row_count,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        return result

    async def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        autocommit: bool = False,
        model_name: str | None = None,
    ) -> QueryResult:
        """Run raw SQL written with ``?`` markers.

        Statements that modify data are subject to the same write policy
        as builder-generated ones.
        """
        adapted = tuple(self._dialect.adapt_param(p) for p in params)
        return await self.run(
            Statement(sql, adapted),
            write=is_write_statement(sql),
            operation="execute",
            model_name=model_name,
            autocommit=autocommit,
        )

    @asynccontextmanager
    async def _connection(self, write: bool) -> AsyncIterator[DriverConnection]:
        binding = self._binding.get()
        if binding is not None:
            yield binding.connection
            return
        if write or current_request().is_sticky(self.name):
            pool = self._writer
        else:
            pool = self._reader
        async with pool.acquire() as conn:
            yield conn

    # -- Transactions --------------------------------------------------------

    async def transaction(
        self,
        fn: Callable[[], Awaitable[T]],
        options: TransactionOptions | None = None,
    ) -> T:
        """
        Run ``fn`` inside a transaction.

        The outermost call opens a real transaction on a writer connection;
        nested calls open ``SAVEPOINT sp_<depth>``. A transient conflict at
        the outermost level re-runs ``fn`` up to ``retry_limit`` more times.
        With ``rollback_only`` the work is always rolled back and ``fn``'s
        result is returned (or its error re-raised).
        """
        options = options or TransactionOptions()
        binding = self._binding.get()
        if binding is not None and binding.readonly:
            raise ReadOnlyContextError(operation="transaction")
        if binding is not None:
            return await self._savepoint(binding, fn, options)

        retry = self.settings.retry_on_error if options.retry_on_error is None else options.retry_on_error
        limit = self.settings.retry_limit if options.retry_limit is None else options.retry_limit
        delay_ms = self.settings.retry_delay_ms if options.retry_delay_ms is None else options.retry_delay_ms

        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._outermost(fn, options)
            except Exception as exc:
                if not retry or attempt > limit or not self._dialect.is_transient_conflict(exc):
                    raise
                pause = delay_ms * 2 ** (attempt - 1)
                logger.warning(
                    "transaction_retry",
                    database=self.name,
                    attempt=attempt,
                    retry_limit=limit,
                    delay_ms=pause,
                    error=str(exc),
                )
                await asyncio.sleep(pause / 1000)

    async def _outermost(self, fn: Callable[[], Awaitable[T]], options: TransactionOptions) -> T:
        async with self._writer.acquire() as conn:
            await conn.begin()
            token = self._binding.set(_Binding(conn, depth=1))
            try:
                result = await fn()
                if options.rollback_only:
                    await conn.rollback()
                    return result
                # a failed COMMIT can leave the transaction open
                await conn.commit()
            except BaseException as exc:
                await self._rollback(conn, exc, depth=1)
                raise
            finally:
                self._binding.reset(token)

        if self.settings.use_writer_after_transaction and self.settings.writer_sticky_duration_ms > 0:
            current_request().mark_sticky(self.name, self.settings.writer_sticky_duration_ms)
        return result

    async def _savepoint(
        self, outer: _Binding, fn: Callable[[], Awaitable[T]], options: TransactionOptions
    ) -> T:
        depth = outer.depth + 1
        name = f"sp_{depth}"
        conn = outer.connection
        await conn.execute(self._dialect.savepoint(name))
        token = self._binding.set(_Binding(conn, depth=depth))
        try:
            result = await fn()
            if options.rollback_only:
                await conn.execute(self._dialect.rollback_to_savepoint(name))
            await conn.execute(self._dialect.release_savepoint(name))
            return result
        except BaseException as exc:
            await self._rollback(conn, exc, depth=depth, savepoint=name)
            raise
        finally:
            self._binding.reset(token)

    async def _rollback(
        self,
        conn: DriverConnection,
        error: BaseException,
        *,
        depth: int,
        savepoint: str | None = None,
    ) -> None:
        """Undo the current level; a failing rollback is logged and ``error`` still propagates."""
        try:
            if savepoint is None:
                await conn.rollback()
            else:
                await conn.execute(self._dialect.rollback_to_savepoint(savepoint))
                await conn.execute(self._dialect.release_savepoint(savepoint))
        except Exception as rollback_error:
            logger.error(
                "transaction_rollback_failed",
                database=self.name,
                depth=depth,
                error=str(error),
                rollback_error=str(rollback_error),
            )
        else:
            logger.debug(
                "transaction_rolled_back",
                database=self.name,
                depth=depth,
                error_type=type(error).__name__,
            )

    async def with_writer(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` with reads on the writer; any write inside raises ``ReadOnlyContextError``."""
        binding = self._binding.get()
        if binding is not None:
            token = self._binding.set(_Binding(binding.connection, binding.depth, readonly=True))
            try:
                return await fn()
            finally:
                self._binding.reset(token)

        async with self._writer.acquire() as conn:
            token = self._binding.set(_Binding(conn, depth=0, readonly=True))
            try:
                return await fn()
            finally:
                self._binding.reset(token)


__all__ = [
    "Database",
    "is_write_statement",
]
