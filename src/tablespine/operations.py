"""
Primitive data operations.

Each public function routes its call through the middleware chain for its
hook and ends in a terminal handler that asks the builder for a statement
and the :class:`~tablespine.database.Database` to run it. Every statement
(including the key pre-selects used where ``RETURNING`` is missing, and
relation loads) passes through the ``execute`` hook.

Architecture::

    ┌──────────────────────────────────────────────────────────────────┐
    │ find / find_one / find_by_id ─► fetch ─►   query hook ─► _run    │
    │ count                        ─► _run                             │
    │ create / create_many         ─► _insert ─► _run (+ key report)   │
    │ update / delete              ─► [select keys] ─► _run            │
    │ update_many                  ─► [select keys] ─► _run            │
    │ execute / query              ─► _run                             │
    │                                                                  │
    │ _run ─► execute hook ─► Database.run()                           │
    └──────────────────────────────────────────────────────────────────┘

``model`` is a model class: it exposes ``__meta__``, ``database()`` and
``_from_rows()``.

Tags:
    operations, repository, data-access, tablespine
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from tablespine.builder import Values
from tablespine.column import Column
from tablespine.conditions import Conditions, TupleIn
from tablespine.database import Database, is_write_statement
from tablespine.errors import LimitExceededError, LimitOrigin
from tablespine.metadata import ModelMeta
from tablespine.middleware import dispatch
from tablespine.sentinels import Dynamic, Raw, Sentinel
from tablespine.types import (
    FindOptions,
    InsertOptions,
    PkeyResult,
    QueryResult,
    Statement,
    WriteOptions,
)


def _meta(model: Any) -> ModelMeta:
    return model.__meta__


def _db(model: Any) -> Database:
    return model.database()


async def _run(
    model: Any,
    statement: Statement,
    *,
    write: bool = False,
    operation: str = "execute",
    autocommit: bool = False,
) -> QueryResult:
    db = _db(model)
    model_name = _meta(model).name

    async def terminal(model_: Any, sql: str, params: Sequence[Any]) -> QueryResult:
        return await db.run(
            Statement(sql, tuple(params)),
            write=write,
            operation=operation,
            model_name=model_name,
            autocommit=autocommit,
        )

    return await dispatch("execute", terminal, model, statement.sql, statement.params)


async def fetch(model: Any, statement: Statement) -> list[Any]:
    """Run a builder SELECT through the ``query`` and ``execute`` hooks; returns instances."""
    return await dispatch("query", _query, model, statement.sql, statement.params)


async def _query(model: Any, sql: str, params: Sequence[Any]) -> list[Any]:
    statement = Statement(sql, tuple(params))
    result = await _run(model, statement, write=is_write_statement(sql), operation="query")
    return model._from_rows(result.rows)


def _find_hard_limit(model: Any) -> int | None:
    meta = _meta(model)
    if meta.find_hard_limit is not None:
        return meta.find_hard_limit
    return _db(model).settings.find_hard_limit


# =============================================================================
# Reads
# =============================================================================


async def find(model: Any, conditions: Conditions = None, options: FindOptions | None = None) -> list[Any]:
    return await dispatch("find", _find, model, conditions, options)


async def _find(model: Any, conditions: Conditions, options: FindOptions | None) -> list[Any]:
    options = options or FindOptions()
    limit = _find_hard_limit(model)
    # An explicit caller limit replaces the hard-limit check
    check = limit is not None and options.limit is None
    if check:
        options = replace(options, limit=limit + 1)
    statement = _db(model).builder.select(_meta(model), conditions, options)
    records = await fetch(model, statement)
    if check and len(records) > limit:
        raise LimitExceededError(
            limit,
            len(records),
            origin=LimitOrigin.FIND,
            model_name=_meta(model).name,
        )
    return records


async def find_one(model: Any, conditions: Conditions = None, options: FindOptions | None = None) -> Any | None:
    return await dispatch("find_one", _find_one, model, conditions, options)


async def _find_one(model: Any, conditions: Conditions, options: FindOptions | None) -> Any | None:
    options = replace(options or FindOptions(), limit=1)
    statement = _db(model).builder.select(_meta(model), conditions, options)
    records = await fetch(model, statement)
    return records[0] if records else None


async def find_by_id(model: Any, keys: Any, options: FindOptions | None = None) -> list[Any]:
    """Rows whose primary key is in ``keys``.

    ``keys`` is a :class:`PkeyResult`, a matrix of key rows, a flat list
    (single-column keys) or a single scalar key.
    """
    return await dispatch("find_by_id", _find_by_id, model, keys, options)


async def _find_by_id(model: Any, keys: Any, options: FindOptions | None) -> list[Any]:
    if not isinstance(keys, (PkeyResult, list, tuple)):
        keys = [keys]
    db = _db(model)
    condition = db.builder.key_condition(_meta(model), keys)
    statement = db.builder.select(_meta(model), [condition], options)
    return await fetch(model, statement)


async def count(model: Any, conditions: Conditions = None, options: FindOptions | None = None) -> int:
    return await dispatch("count", _count, model, conditions, options)


async def _count(model: Any, conditions: Conditions, options: FindOptions | None) -> int:
    statement = _db(model).builder.count(_meta(model), conditions, options)
    result = await _run(model, statement, operation="count")
    if not result.rows:
        return 0
    return int(result.rows[0]["count"])


# =============================================================================
# Writes
# =============================================================================


async def create(model: Any, values: Values, options: InsertOptions | None = None) -> PkeyResult | None:
    return await dispatch("create", _create, model, values, options)


async def _create(model: Any, values: Values, options: InsertOptions | None) -> PkeyResult | None:
    return await _insert(model, [values], options or InsertOptions(), "create")


async def create_many(
    model: Any, rows: Sequence[Values], options: InsertOptions | None = None
) -> PkeyResult | None:
    return await dispatch("create_many", _create_many, model, rows, options)


async def _create_many(model: Any, rows: Sequence[Values], options: InsertOptions | None) -> PkeyResult | None:
    return await _insert(model, rows, options or InsertOptions(), "create_many")


async def _insert(
    model: Any, rows: Sequence[Values], options: InsertOptions, operation: str
) -> PkeyResult | None:
    meta = _meta(model)
    db = _db(model)
    db.check_write(operation, meta.name, autocommit=options.autocommit)
    statement = db.builder.insert(meta, rows, options)
    result = await _run(model, statement, write=True, operation=operation, autocommit=options.autocommit)
    if not options.returning or not meta.primary_key:
        return None
    if db.dialect.supports_returning:
        return PkeyResult.from_rows(meta.primary_key, result.rows)
    return _reported_insert_keys(db, meta, rows, result)


def _reported_insert_keys(
    db: Database, meta: ModelMeta, rows: Sequence[Values], result: QueryResult
) -> PkeyResult | None:
    """Keys of inserted rows where the database cannot return them.

    Caller-supplied key values win. Otherwise a single auto-increment key
    is reported as ``last_insert_id`` onwards, which holds for one
    multi-row INSERT under the default ``innodb_autoinc_lock_mode``.
    """
    pk = meta.primary_key
    normalized = [db.builder.normalize_row(meta, row) for row in rows]
    if all(all(_is_plain(row.get(k)) for k in pk) for row in normalized):
        return PkeyResult(pk, tuple(tuple(row[k] for k in pk) for row in normalized))
    if len(pk) == 1 and result.last_insert_id is not None:
        first = result.last_insert_id
        return PkeyResult(pk, tuple((first + i,) for i in range(len(normalized))))
    return None


def _is_plain(value: Any) -> bool:
    return value is not None and not isinstance(value, (Sentinel, Raw, Dynamic))


async def update(
    model: Any, conditions: Conditions, values: Values, options: WriteOptions | None = None
) -> PkeyResult | None:
    return await dispatch("update", _update, model, conditions, values, options)


async def _update(
    model: Any, conditions: Conditions, values: Values, options: WriteOptions | None
) -> PkeyResult | None:
    options = options or WriteOptions()
    meta = _meta(model)
    db = _db(model)
    db.check_write("update", meta.name, autocommit=options.autocommit)
    statement = db.builder.update(meta, conditions, values, options)
    keys = await _preselect_keys(model, conditions, options, "update")
    result = await _run(model, statement, write=True, operation="update", autocommit=options.autocommit)
    return _write_keys(db, meta, options, result, keys)


async def delete(model: Any, conditions: Conditions, options: WriteOptions | None = None) -> PkeyResult | None:
    return await dispatch("delete", _delete, model, conditions, options)


async def _delete(model: Any, conditions: Conditions, options: WriteOptions | None) -> PkeyResult | None:
    options = options or WriteOptions()
    meta = _meta(model)
    db = _db(model)
    db.check_write("delete", meta.name, autocommit=options.autocommit)
    statement = db.builder.delete(meta, conditions, options)
    keys = await _preselect_keys(model, conditions, options, "delete")
    result = await _run(model, statement, write=True, operation="delete", autocommit=options.autocommit)
    return _write_keys(db, meta, options, result, keys)


async def update_many(
    model: Any,
    rows: Sequence[Values],
    key_columns: Sequence[Column | str],
    options: WriteOptions | None = None,
) -> PkeyResult | None:
    return await dispatch("update_many", _update_many, model, rows, key_columns, options)


async def _update_many(
    model: Any, rows: Sequence[Values], key_columns: Sequence[Column | str], options: WriteOptions | None
) -> PkeyResult | None:
    options = options or WriteOptions()
    meta = _meta(model)
    db = _db(model)
    db.check_write("update_many", meta.name, autocommit=options.autocommit)
    statement = db.builder.update_many(meta, rows, key_columns, options)
    keys = None
    if _needs_preselect(db, meta, options):
        resolved = db.builder.resolve_columns(meta, key_columns)
        normalized = [db.builder.normalize_row(meta, row) for row in rows]
        key_rows = [tuple(row[k] for k in resolved) for row in normalized]
        if len(resolved) == 1:
            condition: Any = (resolved[0], [r[0] for r in key_rows])
        else:
            condition = TupleIn(tuple(resolved), tuple(key_rows))
        keys = await _preselect_keys(model, [condition], options, "update_many")
    result = await _run(model, statement, write=True, operation="update_many", autocommit=options.autocommit)
    return _write_keys(db, meta, options, result, keys)


def _needs_preselect(db: Database, meta: ModelMeta, options: WriteOptions) -> bool:
    return options.returning and bool(meta.primary_key) and not db.dialect.supports_returning


async def _preselect_keys(
    model: Any, conditions: Conditions, options: WriteOptions, operation: str
) -> PkeyResult | None:
    """Lock and read the keys a write will touch (dialects without ``RETURNING``)."""
    meta = _meta(model)
    db = _db(model)
    if not _needs_preselect(db, meta, options):
        return None
    statement = db.builder.select_keys(meta, conditions, operation=operation)
    result = await _run(model, statement, write=True, operation=operation, autocommit=options.autocommit)
    return PkeyResult.from_rows(meta.primary_key, result.rows)


def _write_keys(
    db: Database,
    meta: ModelMeta,
    options: WriteOptions,
    result: QueryResult,
    preselected: PkeyResult | None,
) -> PkeyResult | None:
    if preselected is not None:
        return preselected
    if not options.returning or not meta.primary_key or not db.dialect.supports_returning:
        return None
    return PkeyResult.from_rows(meta.primary_key, result.rows)


# =============================================================================
# Raw SQL
# =============================================================================


async def execute(
    model: Any, sql: str, params: Sequence[Any] = (), *, autocommit: bool = False
) -> QueryResult:
    """Run raw SQL (``?`` markers) through the ``execute`` hook."""
    dialect = _db(model).dialect
    statement = Statement(sql, tuple(dialect.adapt_param(p) for p in params))
    return await _run(
        model,
        statement,
        write=is_write_statement(sql),
        operation="execute",
        autocommit=autocommit,
    )


async def query(model: Any, sql: str, params: Sequence[Any] = ()) -> list[Any]:
    """Run a raw SELECT and build model instances from its rows."""
    dialect = _db(model).dialect
    return await dispatch("query", _query, model, sql, tuple(dialect.adapt_param(p) for p in params))


__all__ = [
    "find",
    "find_one",
    "find_by_id",
    "count",
    "create",
    "create_many",
    "update",
    "update_many",
    "delete",
    "execute",
    "query",
    "fetch",
]
