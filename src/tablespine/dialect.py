"""SQL dialect abstraction.

The builder writes every statement with anonymous ``?`` markers and asks
the :class:`Dialect` for everything that differs between backends:
placeholder style, identifier quoting, server time, boolean literals,
parameter adaptation (JSON / arrays), ORDER BY null placement, LIMIT and
OFFSET forms, upsert syntax, ``RETURNING`` support, the set-based
``update_many`` statement, and which driver errors count as transient
conflicts.

Manifesto:
    Statement shape is decided once, in the builder. Dialects only supply
    fragments and the final placeholder rewrite, so the same condition
    list produces equivalent SQL on every backend.

    - **One marker:** builder emits ``?``; :meth:`Dialect.convert_placeholders`
      renders ``$n`` (asyncpg), ``%s`` (aiomysql) or ``?`` (aiosqlite)
    - **Zero coupling:** no driver import in this module
    - **Registry:** :func:`get_dialect` / :func:`register_dialect`

Architecture::

    builder ──► "SELECT * FROM users WHERE id IN (?, ?) AND name = ?"
                              │ convert_placeholders()
          ┌───────────────────┼─────────────────────┐
          ▼                   ▼                     ▼
    ┌────────────┐     ┌──────────────┐      ┌────────────┐
    │ PostgreSQL │     │    MySQL     │      │   SQLite   │
    │ $1, $2, $3 │     │ %s (% → %%)  │      │  ?, ?, ?   │
    │ RETURNING  │     │ re-select    │      │ RETURNING  │
    │ UNNEST     │     │ JOIN VALUES  │      │ CTE VALUES │
    └────────────┘     └──────────────┘      └────────────┘

Examples:
    >>> d = get_dialect("postgresql")
    >>> d.convert_placeholders("SELECT * FROM t WHERE a = ? AND b = '?'")
    "SELECT * FROM t WHERE a = $1 AND b = '?'"
    >>> get_dialect("mysql").convert_placeholders("name LIKE '50%' AND id = ?")
    "name LIKE '50%%' AND id = %s"

Guardrails:
    ❌ DON'T: Hand-write ``$1`` or ``%s`` in SQL passed to ``Database.execute``
    ✅ DO: Use ``?`` everywhere; the dialect rewrites it

    ❌ DON'T: Use PostgreSQL's ``?`` JSON operators in raw SQL
    ✅ DO: Use ``jsonb_exists()`` and friends instead

Tags:
    dialect, sql, portability, postgresql, mysql, sqlite, tablespine
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from tablespine.column import NullsOrder, OrderColumn
from tablespine.errors import ConfigError, ContractError, is_retryable, message_signals_conflict
from tablespine.types import Statement

_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# Words quoted when used as bare identifiers.
RESERVED_WORDS = frozenset(
    {
        "all", "and", "as", "asc", "between", "by", "case", "check", "column",
        "constraint", "create", "default", "delete", "desc", "distinct", "drop",
        "else", "end", "exists", "for", "foreign", "from", "grant", "group",
        "having", "in", "index", "insert", "interval", "into", "is", "join",
        "key", "like", "limit", "not", "null", "offset", "on", "or", "order",
        "primary", "range", "rank", "references", "release", "row", "rows",
        "select", "set", "table", "then", "to", "union", "unique", "update",
        "user", "using", "values", "when", "where", "window", "with",
    }
)


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Methods return SQL fragments (strings) or adapted values; none of them
    touch a connection.
    """

    @property
    def name(self) -> str:
        """Dialect name (``'postgresql'``, ``'mysql'``, ``'sqlite'``)."""
        ...

    supports_returning: bool
    supports_tuple_in: bool
    default_values_clause: str

    # -- Placeholders ------------------------------------------------------

    def placeholder(self, index: int) -> str:
        """Native placeholder for the 0-based ``index``-th parameter."""
        ...

    def convert_placeholders(self, sql: str) -> str:
        """Rewrite ``?`` markers outside quoted text into native placeholders."""
        ...

    # -- Identifiers and literals -----------------------------------------

    def quote_identifier(self, name: str) -> str:
        ...

    def identifier(self, name: str) -> str:
        """Quote ``name`` only when it is a reserved word; expressions pass through."""
        ...

    def now(self) -> str:
        ...

    def boolean(self, value: bool) -> str:
        ...

    def adapt_param(self, value: Any) -> Any:
        """Convert a Python value into something the driver can bind."""
        ...

    # -- Clauses -----------------------------------------------------------

    def order_term(self, term: OrderColumn) -> str:
        ...

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        ...

    def for_update(self) -> str:
        ...

    def ilike(self, column: str) -> str:
        """Case-insensitive LIKE predicate with one ``?`` for the pattern."""
        ...

    def insert_verb(self, ignore: bool) -> str:
        ...

    def upsert_clause(
        self, conflict: Sequence[str], updates: Sequence[str] | None, ignore: bool
    ) -> str:
        ...

    def update_many(
        self,
        table: str,
        columns: Sequence[UpdateManyColumn],
        key_names: Sequence[str],
        rows: Sequence[Sequence[Any]],
        returning: Sequence[str] | None,
    ) -> Statement:
        ...

    # -- Transactions ------------------------------------------------------

    def savepoint(self, name: str) -> str:
        ...

    def release_savepoint(self, name: str) -> str:
        ...

    def rollback_to_savepoint(self, name: str) -> str:
        ...

    def is_transient_conflict(self, error: BaseException) -> bool:
        ...


class UpdateManyColumn:
    """One column of a set-based update.

    ``role`` is ``"key"`` (join column), ``"set"`` (assigned column) or
    ``"skip"`` (boolean flag paired with ``target``: when true the row keeps
    its current value for ``target``).
    """

    __slots__ = ("name", "role", "sql_type", "target")

    def __init__(self, name: str, role: str, sql_type: str | None = None, target: str | None = None):
        self.name = name
        self.role = role
        self.sql_type = sql_type
        self.target = target

    def __repr__(self) -> str:
        return f"UpdateManyColumn({self.name!r}, {self.role!r})"


def rewrite_placeholders(
    sql: str,
    render: Callable[[int], str],
    *,
    escape_percent: bool = False,
    quotes: str = "'\"",
) -> str:
    """Replace ``?`` outside quoted sections with ``render(index)``.

    Quoted sections (``'...'``, ``"..."`` and any extra quote characters in
    ``quotes``) are copied verbatim; a doubled quote inside a section is an
    escaped quote. With ``escape_percent`` every ``%`` is doubled, quoted or
    not, for drivers that apply ``%`` formatting to the whole statement.
    """
    out: list[str] = []
    index = 0
    quote: str | None = None
    i = 0
    length = len(sql)
    while i < length:
        ch = sql[i]
        if escape_percent and ch == "%":
            out.append("%%")
        elif quote is not None:
            out.append(ch)
            if ch == quote:
                if i + 1 < length and sql[i + 1] == quote:
                    out.append(quote)
                    i += 1
                else:
                    quote = None
        elif ch in quotes:
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append(render(index))
            index += 1
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def count_placeholders(sql: str) -> int:
    """Number of ``?`` markers outside quoted sections."""
    count = 0

    def _render(index: int) -> str:
        nonlocal count
        count += 1
        return "?"

    rewrite_placeholders(sql, _render, quotes="'\"`")
    return count


class _BaseDialect:
    """Fragments shared by all supported dialects."""

    dialect_name = "base"
    supports_returning = True
    supports_tuple_in = True
    supports_nulls_order = True
    default_values_clause = "DEFAULT VALUES"
    quote_char = '"'

    @property
    def name(self) -> str:
        return self.dialect_name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"

    # -- Placeholders ------------------------------------------------------

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def convert_placeholders(self, sql: str) -> str:
        return sql

    # -- Identifiers and literals -----------------------------------------

    def quote_identifier(self, name: str) -> str:
        q = self.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"

    def identifier(self, name: str) -> str:
        if not _SIMPLE_IDENTIFIER.match(name):
            return name
        return ".".join(
            self.quote_identifier(part) if part.lower() in RESERVED_WORDS else part
            for part in name.split(".")
        )

    def now(self) -> str:
        return "CURRENT_TIMESTAMP"

    def boolean(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"

    def adapt_param(self, value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return value

    # -- Clauses -----------------------------------------------------------

    def order_term(self, term: OrderColumn) -> str:
        column = self.identifier(term.name)
        sql = f"{column} {term.direction.value}"
        if term.nulls is None:
            return sql
        if self.supports_nulls_order:
            return f"{sql} NULLS {term.nulls.value}"
        # NULL sorts lowest here; emulate with an IS NULL key first
        null_key = "ASC" if term.nulls is NullsOrder.LAST else "DESC"
        return f"{column} IS NULL {null_key}, {sql}"

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {_non_negative(limit, 'limit')}")
        if offset is not None:
            parts.append(f"OFFSET {_non_negative(offset, 'offset')}")
        return " ".join(parts)

    def for_update(self) -> str:
        return "FOR UPDATE"

    def ilike(self, column: str) -> str:
        return f"LOWER({column}) LIKE LOWER(?)"

    def insert_verb(self, ignore: bool) -> str:  # noqa: ARG002
        return "INSERT INTO"

    def upsert_clause(
        self, conflict: Sequence[str], updates: Sequence[str] | None, ignore: bool
    ) -> str:
        target = f" ({', '.join(conflict)})" if conflict else ""
        if ignore or not updates:
            return f"ON CONFLICT{target} DO NOTHING"
        if not conflict:
            raise ContractError("on_conflict_update requires on_conflict columns", constraint="upsert")
        sets = ", ".join(f"{c} = {self._excluded(c)}" for c in updates)
        return f"ON CONFLICT{target} DO UPDATE SET {sets}"

    def _excluded(self, column: str) -> str:
        return f"EXCLUDED.{column}"

    def update_many(
        self,
        table: str,
        columns: Sequence[UpdateManyColumn],
        key_names: Sequence[str],
        rows: Sequence[Sequence[Any]],
        returning: Sequence[str] | None,
    ) -> Statement:
        raise NotImplementedError

    def _assignment(self, table: str, col: UpdateManyColumn, skip_flag: str | None) -> str:
        """Right-hand side for one SET column, honoring a per-row skip flag."""
        if skip_flag is None:
            return f"v.{col.name}"
        return f"CASE WHEN v.{skip_flag} THEN {table}.{col.name} ELSE v.{col.name} END"

    # -- Transactions ------------------------------------------------------

    def savepoint(self, name: str) -> str:
        return f"SAVEPOINT {name}"

    def release_savepoint(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {name}"

    def rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {name}"

    def is_transient_conflict(self, error: BaseException) -> bool:
        if is_retryable(error):
            return True
        return message_signals_conflict(error)


def _non_negative(value: int, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ContractError(f"{label} must be a non-negative integer", field=label, value=value)
    return value


def _skip_flags(columns: Sequence[UpdateManyColumn]) -> dict[str, str]:
    return {c.target: c.name for c in columns if c.role == "skip" and c.target}


class PostgreSQLDialect(_BaseDialect):
    """PostgreSQL - ``$n`` placeholders (asyncpg), ``RETURNING``, ``UNNEST`` bulk update."""

    dialect_name = "postgresql"

    # SQLSTATE serialization_failure / deadlock_detected
    CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})

    _ARRAY_TYPES: dict[type, str] = {
        bool: "boolean",
        int: "bigint",
        float: "double precision",
        Decimal: "numeric",
        str: "text",
        bytes: "bytea",
        date: "date",
        time: "time",
        UUID: "uuid",
        dict: "jsonb",
        list: "jsonb",
    }

    def placeholder(self, index: int) -> str:
        return f"${index + 1}"

    def convert_placeholders(self, sql: str) -> str:
        return rewrite_placeholders(sql, self.placeholder)

    def now(self) -> str:
        return "NOW()"

    def adapt_param(self, value: Any) -> Any:
        if isinstance(value, dict):
            return json.dumps(value, default=str)
        return value

    def ilike(self, column: str) -> str:
        return f"{column} ILIKE ?"

    def array_type(self, sql_type: str | None, values: Sequence[Any], column: str = "?") -> str:
        """Element type for an ``UNNEST(?::type[])`` column.

        Inferred from the first non-NULL value unless the column declares
        ``sql_type``. An all-NULL column without one cannot be typed.
        """
        if sql_type:
            return sql_type
        for value in values:
            if value is None:
                continue
            if isinstance(value, datetime):
                return "timestamptz" if value.tzinfo else "timestamp"
            for py_type, pg_type in self._ARRAY_TYPES.items():
                if isinstance(value, py_type):
                    return pg_type
            return "text"
        raise ContractError(
            f"update_many column {column!r} holds only NULLs; declare sql_type on it",
            field=column,
            constraint="sql_type",
        )

    def update_many(
        self,
        table: str,
        columns: Sequence[UpdateManyColumn],
        key_names: Sequence[str],
        rows: Sequence[Sequence[Any]],
        returning: Sequence[str] | None,
    ) -> Statement:
        flags = _skip_flags(columns)
        arrays: list[list[Any]] = [[] for _ in columns]
        for row in rows:
            for i, value in enumerate(row):
                arrays[i].append(value if columns[i].role == "skip" else self._array_element(value))
        casts = [
            f"?::{self.array_type(col.sql_type, arrays[i], col.name)}[]" for i, col in enumerate(columns)
        ]
        sets = ", ".join(
            f"{c.name} = {self._assignment(table, c, flags.get(c.name))}"
            for c in columns
            if c.role == "set"
        )
        names = ", ".join(c.name for c in columns)
        join = " AND ".join(f"{table}.{k} = v.{k}" for k in key_names)
        sql = (
            f"UPDATE {table} SET {sets} "
            f"FROM UNNEST({', '.join(casts)}) AS v({names}) "
            f"WHERE {join}"
        )
        if returning:
            sql += " RETURNING " + ", ".join(f"{table}.{r}" for r in returning)
        return Statement(sql, tuple(arrays))

    def _array_element(self, value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return value

    def is_transient_conflict(self, error: BaseException) -> bool:
        if getattr(error, "sqlstate", None) in self.CONFLICT_SQLSTATES:
            return True
        return super().is_transient_conflict(error)


class MySQLDialect(_BaseDialect):
    """MySQL - ``%s`` placeholders (aiomysql), no ``RETURNING``, ``JOIN (VALUES ROW ...)`` bulk update."""

    dialect_name = "mysql"
    supports_returning = False
    supports_nulls_order = False
    default_values_clause = "() VALUES ()"
    quote_char = "`"

    # ER_LOCK_DEADLOCK / ER_LOCK_WAIT_TIMEOUT
    CONFLICT_ERRNOS = frozenset({1213, 1205})

    # LIMIT is mandatory with OFFSET: 2**64 - 1 means "all rows"
    _NO_LIMIT = "18446744073709551615"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def convert_placeholders(self, sql: str) -> str:
        return rewrite_placeholders(sql, self.placeholder, escape_percent=True, quotes="'\"`")

    def now(self) -> str:
        return "NOW()"

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        if offset is not None and limit is None:
            return f"LIMIT {self._NO_LIMIT} OFFSET {_non_negative(offset, 'offset')}"
        return super().limit_offset(limit, offset)

    def insert_verb(self, ignore: bool) -> str:
        return "INSERT IGNORE INTO" if ignore else "INSERT INTO"

    def upsert_clause(
        self, conflict: Sequence[str], updates: Sequence[str] | None, ignore: bool
    ) -> str:
        if ignore:
            return ""
        if not updates:
            # No-op assignment keeps duplicate rows untouched without IGNORE's side effects
            first = conflict[0] if conflict else None
            if first is None:
                raise ContractError("on_conflict requires at least one column", constraint="upsert")
            return f"ON DUPLICATE KEY UPDATE {first} = {first}"
        sets = ", ".join(f"{c} = VALUES({c})" for c in updates)
        return f"ON DUPLICATE KEY UPDATE {sets}"

    def update_many(
        self,
        table: str,
        columns: Sequence[UpdateManyColumn],
        key_names: Sequence[str],
        rows: Sequence[Sequence[Any]],
        returning: Sequence[str] | None,
    ) -> Statement:
        flags = _skip_flags(columns)
        row_sql = "ROW(" + ", ".join("?" for _ in columns) + ")"
        values = ", ".join(row_sql for _ in rows)
        names = ", ".join(c.name for c in columns)
        join = " AND ".join(f"{table}.{k} = v.{k}" for k in key_names)
        sets = ", ".join(
            f"{table}.{c.name} = "
            + (
                f"IF(v.{flags[c.name]}, {table}.{c.name}, v.{c.name})"
                if c.name in flags
                else f"v.{c.name}"
            )
            for c in columns
            if c.role == "set"
        )
        sql = f"UPDATE {table} JOIN (VALUES {values}) AS v({names}) ON {join} SET {sets}"
        params = tuple(self.adapt_param(v) for row in rows for v in row)
        return Statement(sql, params)

    def is_transient_conflict(self, error: BaseException) -> bool:
        args = getattr(error, "args", ())
        if args and isinstance(args[0], int) and args[0] in self.CONFLICT_ERRNOS:
            return True
        return super().is_transient_conflict(error)


class SQLiteDialect(_BaseDialect):
    """SQLite - ``?`` placeholders (aiosqlite), ``RETURNING`` (3.35+), CTE + ``UPDATE FROM`` bulk update."""

    dialect_name = "sqlite"

    def now(self) -> str:
        return "CURRENT_TIMESTAMP"

    def boolean(self, value: bool) -> str:
        return "1" if value else "0"

    def for_update(self) -> str:
        # Writers hold the database lock; row locks do not exist
        return ""

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        if offset is not None and limit is None:
            return f"LIMIT -1 OFFSET {_non_negative(offset, 'offset')}"
        return super().limit_offset(limit, offset)

    def _excluded(self, column: str) -> str:
        return f"excluded.{column}"

    def update_many(
        self,
        table: str,
        columns: Sequence[UpdateManyColumn],
        key_names: Sequence[str],
        rows: Sequence[Sequence[Any]],
        returning: Sequence[str] | None,
    ) -> Statement:
        flags = _skip_flags(columns)
        row_sql = "(" + ", ".join("?" for _ in columns) + ")"
        values = ", ".join(row_sql for _ in rows)
        names = ", ".join(c.name for c in columns)
        sets = ", ".join(
            f"{c.name} = {self._assignment(table, c, flags.get(c.name))}"
            for c in columns
            if c.role == "set"
        )
        join = " AND ".join(f"{table}.{k} = v.{k}" for k in key_names)
        sql = f"WITH v({names}) AS (VALUES {values}) UPDATE {table} SET {sets} FROM v WHERE {join}"
        if returning:
            sql += " RETURNING " + ", ".join(returning)
        params = tuple(self.adapt_param(v) for row in rows for v in row)
        return Statement(sql, params)

    def is_transient_conflict(self, error: BaseException) -> bool:
        text = str(error).lower()
        if "database is locked" in text or "database table is locked" in text:
            return True
        return super().is_transient_conflict(error)


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
    "mysql": MySQLDialect(),
}


def get_dialect(db_type: Any) -> Dialect:
    """Get a dialect by name (``'sqlite'``, ``'postgresql'``, ``'postgres'``, ``'mysql'``).

    Accepts a :class:`~tablespine.settings.DialectName` too.

    Raises:
        ConfigError: If ``db_type`` is not recognised.
    """
    key = db_type.lower() if isinstance(db_type, str) else db_type.value
    if key not in _DIALECTS:
        raise ConfigError(
            f"Unknown dialect '{db_type}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (third-party backends, test doubles)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "Dialect",
    "UpdateManyColumn",
    "PostgreSQLDialect",
    "MySQLDialect",
    "SQLiteDialect",
    "RESERVED_WORDS",
    "rewrite_placeholders",
    "count_placeholders",
    "get_dialect",
    "register_dialect",
]
