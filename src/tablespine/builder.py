"""
SQL builder - condition and value lists to parameterized statements.

Every method is pure: ``(metadata, conditions, values, options)`` in,
:class:`~tablespine.types.Statement` out. Nothing here touches a
connection, so every contract violation (malformed entry, wrong-model
parent reference, key arity mismatch) is raised before any SQL is issued.

Manifesto:
    Statements are assembled strictly left to right, and every bound value
    is appended at the moment its ``?`` is written. Parameter order can
    therefore never drift from placeholder order, whatever mix of CTEs,
    query-based models, joins, OR-groups and subqueries a call combines.

Architecture:
    ::

        conditions ──► _Compiler.where() ──┐
        values     ──► _Compiler.value() ──┼──► Statement(sql with ?, params)
        options    ──► clauses            ──┘            │
                                                          ▼
                                        Dialect.convert_placeholders()
                                        (applied by Database.execute)

        SELECT [cols] FROM t [JOIN] [WHERE] [GROUP BY] [ORDER BY]
               [LIMIT] [OFFSET] [FOR UPDATE]
        params: CTE params → model query params → JOIN params → WHERE params

Condition shapes:
    ==============================  ===================================
    ``(col, 5)``                    ``col = ?``
    ``(col, [1, 2])``               ``col IN (?, ?)``; ``[]`` → ``1 = 0``
    ``(col, None)`` / ``NULL``      ``col IS NULL``
    ``(col, NOT_NULL)``             ``col IS NOT NULL``
    ``(col, True)``                 ``col = TRUE`` (``1`` on SQLite)
    ``(col, SKIP)``                 dropped
    ``(col, Raw("x"))``             ``col = x``
    ``(col, parent_ref(p))``        ``col = <enclosing row>.p``
    ``("a > ? AND b < ?", [1, 2])`` fragment, values bound in order
    ``or_([...], [...])``           ``((...) OR (...))``
    ==============================  ===================================

Examples:
    >>> builder = SqlBuilder(get_dialect("sqlite"))
    >>> stmt = builder.update(User.__meta__, [(User.id, 1)],
    ...                       [(User.name, "x"), (User.email, SKIP)])
    >>> stmt.sql
    'UPDATE users SET name = ? WHERE id = ? RETURNING id'
    >>> stmt.params
    ('x', 1)

Guardrails:
    ❌ DON'T: Concatenate builder output with caller values
    ✅ DO: Pass values through conditions, ``Dynamic`` or fragment params

Tags:
    sql-builder, query-construction, parameterized-sql, tablespine
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from tablespine.column import Column, as_order
from tablespine.conditions import (
    Between,
    Comparison,
    Conditions,
    Exists,
    InSubquery,
    OrGroup,
    ParentRef,
    Predicate,
    RawCondition,
    TupleIn,
    normalize_conditions,
)
from tablespine.dialect import Dialect, UpdateManyColumn, count_placeholders
from tablespine.errors import ArityError, ColumnOwnershipError, ContractError
from tablespine.metadata import ModelMeta, get_model_meta
from tablespine.sentinels import NOT_NULL, NOW, NULL, SKIP, Dynamic, Raw, Sentinel
from tablespine.types import FindOptions, InsertOptions, PkeyResult, Statement, WriteOptions

Values = Mapping[Any, Any] | Iterable[tuple[Any, Any]]

_COMPARISON_OPERATORS = frozenset(
    {"=", "!=", "<>", ">", ">=", "<", "<=", "LIKE", "NOT LIKE", "ILIKE", "IN", "NOT IN"}
)


@dataclass(frozen=True)
class _Scope:
    """The model a condition list is compiled against, and its enclosing query.

    ``alias`` is the name that qualifies the model's row in SQL: the quoted
    table name at the top level, a generated ``_sqN`` alias in a subquery.
    """

    model_tag: str
    alias: str
    parent: _Scope | None = None


class _Compiler:
    """Accumulates params while fragments are rendered left to right."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self.params: list[Any] = []
        self.subqueries = 0

    # -- Binding -------------------------------------------------------------

    def bind(self, value: Any) -> str:
        self.params.append(self.dialect.adapt_param(value))
        return "?"

    def bind_fragment(self, sql: str, params: Sequence[Any], label: str) -> str:
        expected = count_placeholders(sql)
        if expected != len(params):
            raise ArityError(
                f"{label} has {expected} placeholders but {len(params)} values",
                value=sql,
                constraint="placeholders",
            )
        for value in params:
            self.bind(value)
        return sql

    def name(self, column: Column | str) -> str:
        if isinstance(column, Column):
            return self.dialect.identifier(column.column_name)
        if isinstance(column, str):
            return self.dialect.identifier(column)
        raise ContractError(f"expected a Column or column name, got {column!r}", value=column)

    # -- Conditions ----------------------------------------------------------

    def where(self, entries: Iterable[Any], scope: _Scope) -> str | None:
        parts = [p for p in (self.entry(e, scope) for e in entries) if p is not None]
        if not parts:
            return None
        return " AND ".join(parts)

    def entry(self, entry: Any, scope: _Scope) -> str | None:
        if isinstance(entry, Predicate):
            return self.predicate(entry, scope)
        if not isinstance(entry, tuple) or len(entry) != 2:
            raise ContractError(
                f"condition entries are (key, value) pairs or predicates, got {entry!r}",
                value=entry,
                constraint="condition_shape",
            )
        key, value = entry
        if value is SKIP:
            return None
        if isinstance(key, Column):
            return self.column_condition(self.name(key), value, scope)
        if isinstance(key, str):
            if count_placeholders(key):
                return self.fragment(key, value)
            return self.column_condition(self.name(key), value, scope)
        raise ContractError(
            f"condition key must be a Column or string, got {key!r}",
            value=key,
            constraint="condition_shape",
        )

    def fragment(self, sql: str, value: Any) -> str:
        expected = count_placeholders(sql)
        if expected == 1:
            self.bind(value)
            return sql
        if not isinstance(value, (list, tuple)) or len(value) != expected:
            raise ArityError(
                f"fragment {sql!r} needs {expected} values",
                value=value,
                constraint="placeholders",
            )
        for item in value:
            self.bind(item)
        return sql

    def column_condition(self, name: str, value: Any, scope: _Scope) -> str:
        if value is None or value is NULL:
            return f"{name} IS NULL"
        if value is NOT_NULL:
            return f"{name} IS NOT NULL"
        if value is NOW:
            return f"{name} = {self.dialect.now()}"
        if isinstance(value, Sentinel):
            raise ContractError(f"{value!r} is not valid in a condition", value=value)
        if isinstance(value, bool):
            return f"{name} = {self.dialect.boolean(value)}"
        if isinstance(value, Raw):
            return f"{name} = {value.sql}"
        if isinstance(value, Dynamic):
            return f"{name} = {self.bind_fragment(value.sql, value.params, 'dynamic value')}"
        if isinstance(value, ParentRef):
            return f"{name} = {self.parent_column(value, scope)}"
        if isinstance(value, (list, tuple, set, frozenset)):
            return self.in_list(name, list(value))
        if isinstance(value, Predicate):
            raise ContractError(
                f"predicate {value!r} cannot be used as a value", value=value, constraint="condition_shape"
            )
        return f"{name} = {self.bind(value)}"

    def in_list(self, name: str, values: list[Any], negate: bool = False) -> str:
        if not values:
            return "1 = 1" if negate else "1 = 0"
        marks = ", ".join(self.bind(v) for v in values)
        return f"{name} {'NOT IN' if negate else 'IN'} ({marks})"

    def parent_column(self, ref: ParentRef, scope: _Scope) -> str:
        parent = scope.parent
        if parent is None:
            raise ContractError(
                f"parent_ref({ref.column!r}) is only valid inside a subquery",
                value=ref.column,
                constraint="parent_ref",
            )
        if ref.column.model_tag != parent.model_tag:
            raise ColumnOwnershipError(
                f"parent_ref({ref.column!r}) belongs to {ref.column.model_tag}, "
                f"but the calling model is {parent.model_tag}",
                field=ref.column.column_name,
                value=ref.column,
                constraint="parent_ref",
            )
        return f"{parent.alias}.{self.name(ref.column)}"

    def predicate(self, pred: Predicate, scope: _Scope) -> str | None:
        match pred:
            case Comparison():
                return self.comparison(pred, scope)
            case Between():
                name = self.name(pred.column)
                return f"{name} BETWEEN {self.bind(pred.low)} AND {self.bind(pred.high)}"
            case TupleIn():
                return self.tuple_in(pred)
            case OrGroup():
                return self.or_group(pred, scope)
            case RawCondition():
                return f"({self.bind_fragment(pred.sql, pred.params, 'raw condition')})"
            case InSubquery():
                return self.in_subquery(pred, scope)
            case Exists():
                return self.exists(pred, scope)
            case _:
                raise ContractError(f"unsupported predicate {pred!r}", value=pred)

    def comparison(self, pred: Comparison, scope: _Scope) -> str | None:
        operator = pred.operator.upper()
        if operator not in _COMPARISON_OPERATORS:
            raise ContractError(f"unsupported operator {pred.operator!r}", value=pred.operator)
        name = self.name(pred.column)
        value = pred.value
        if value is SKIP:
            return None
        if operator in ("IN", "NOT IN"):
            if not isinstance(value, (list, tuple, set, frozenset)):
                raise ContractError(f"{operator} needs a list of values", value=value)
            return self.in_list(name, list(value), negate=operator == "NOT IN")
        if value is None or value is NULL:
            if operator == "=":
                return f"{name} IS NULL"
            if operator in ("!=", "<>"):
                return f"{name} IS NOT NULL"
            raise ContractError(f"cannot compare {name} {operator} NULL", value=value)
        if operator == "ILIKE":
            sql = self.dialect.ilike(name)
            self.bind(value)
            return sql
        if isinstance(value, Raw):
            return f"{name} {operator} {value.sql}"
        if isinstance(value, ParentRef):
            return f"{name} {operator} {self.parent_column(value, scope)}"
        if isinstance(value, Dynamic):
            return f"{name} {operator} {self.bind_fragment(value.sql, value.params, 'dynamic value')}"
        if value is NOW:
            return f"{name} {operator} {self.dialect.now()}"
        return f"{name} {operator} {self.bind(value)}"

    def tuple_in(self, pred: TupleIn) -> str:
        width = len(pred.columns)
        if width == 0:
            raise ContractError("tuple_in needs at least one column", constraint="tuple_in")
        for row in pred.rows:
            if len(row) != width:
                raise ArityError(
                    f"tuple_in row {row!r} has {len(row)} values for {width} columns",
                    value=row,
                    constraint="arity",
                )
        if not pred.rows:
            return "1 = 0"
        names = [self.name(c) for c in pred.columns]
        if width == 1:
            return self.in_list(names[0], [r[0] for r in pred.rows])
        if self.dialect.supports_tuple_in:
            rows = ", ".join(
                "(" + ", ".join(self.bind(v) for v in row) + ")" for row in pred.rows
            )
            return f"({', '.join(names)}) IN ({rows})"
        groups = []
        for row in pred.rows:
            terms = " AND ".join(self.column_condition(n, v, _Scope("", "")) for n, v in zip(names, row))
            groups.append(f"({terms})")
        return "(" + " OR ".join(groups) + ")"

    def or_group(self, pred: OrGroup, scope: _Scope) -> str | None:
        groups = [g for g in (self.where(group, scope) for group in pred.groups) if g is not None]
        if not groups:
            return None
        if len(groups) == 1:
            return f"({groups[0]})"
        return "(" + " OR ".join(f"({g})" for g in groups) + ")"

    def in_subquery(self, pred: InSubquery, scope: _Scope) -> str:
        if not pred.key_pairs:
            raise ContractError("subquery needs at least one key pair", constraint="subquery")
        targets = [target for _, target in pred.key_pairs]
        tags = {t.model_tag for t in targets}
        if len(tags) != 1:
            raise ContractError(
                "subquery target columns must belong to one model",
                value=targets,
                constraint="subquery",
            )
        meta = get_model_meta(targets[0].model_tag)
        left = [self.name(local) for local, _ in pred.key_pairs]
        lhs = left[0] if len(left) == 1 else f"({', '.join(left)})"
        select = ", ".join(self.name(t) for t in targets)
        sql = f"SELECT {select} FROM {self.subquery(meta, [*meta.default_filter, *pred.conditions], scope)}"
        return f"{lhs} {'NOT IN' if pred.negate else 'IN'} ({sql})"

    def exists(self, pred: Exists, scope: _Scope) -> str:
        target = pred.target
        if not isinstance(target, ModelMeta):
            raise ContractError(f"exists() target must be a model, got {target!r}", value=target)
        sql = f"SELECT 1 FROM {self.subquery(target, [*target.default_filter, *pred.conditions], scope)}"
        return f"{'NOT EXISTS' if pred.negate else 'EXISTS'} ({sql})"

    def subquery(self, meta: ModelMeta, conditions: Sequence[Any], scope: _Scope) -> str:
        """Aliased FROM target plus WHERE for a subquery over ``meta``.

        The generated alias hides the target's table name inside the
        subquery, so ``parent_ref`` always reaches the enclosing row, even
        when a model is correlated against itself.
        """
        self.subqueries += 1
        alias = f"_sq{self.subqueries}"
        sql = f"{self.source(meta)} AS {alias}"
        where = self.where(conditions, _Scope(meta.model_tag, alias, parent=scope))
        if where:
            sql += f" WHERE {where}"
        return sql

    def source(self, meta: ModelMeta) -> str:
        """Subquery FROM target; query-based models become derived tables."""
        if meta.query is None:
            return self.dialect.identifier(meta.table_name)
        return f"({self.bind_fragment(meta.query, meta.query_params, f'{meta.name} query')})"

    # -- Values --------------------------------------------------------------

    def value(self, value: Any) -> str:
        if value is None or value is NULL:
            return self.bind(None)
        if value is NOW:
            return self.dialect.now()
        if isinstance(value, Sentinel):
            raise ContractError(f"{value!r} is not valid as a column value", value=value)
        if isinstance(value, Raw):
            return value.sql
        if isinstance(value, Dynamic):
            return self.bind_fragment(value.sql, value.params, "dynamic value")
        if isinstance(value, (Predicate, ParentRef)):
            raise ContractError(f"{value!r} is not valid as a column value", value=value)
        return self.bind(value)


class SqlBuilder:
    """Dialect-bound statement factory.

    One instance per dialect is enough; it holds no per-call state.
    """

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    def _compiler(self) -> _Compiler:
        return _Compiler(self.dialect)

    def _scope(self, meta: ModelMeta, table: str | None = None) -> _Scope:
        return _Scope(meta.model_tag, self.dialect.identifier(table or meta.table_name))

    # -- Reads ---------------------------------------------------------------

    def select(
        self,
        meta: ModelMeta,
        conditions: Conditions = None,
        options: FindOptions | None = None,
    ) -> Statement:
        options = options or FindOptions()
        c = self._compiler()
        sql = self._with_clause(c, meta, options)
        table = self.dialect.identifier(meta.table_name)
        sql += f"SELECT {self._select_list(c, options, table)} FROM {table}"
        sql += self._join(c, options)
        where = c.where([*meta.default_filter, *normalize_conditions(conditions)], self._scope(meta))
        if where:
            sql += f" WHERE {where}"
        group = options.group if options.group is not None else meta.default_group
        if group:
            sql += " GROUP BY " + ", ".join(c.name(g) for g in group)
        order = options.order if options.order is not None else meta.default_order
        if order:
            sql += " ORDER BY " + ", ".join(self.dialect.order_term(as_order(t)) for t in order)
        limits = self.dialect.limit_offset(options.limit, options.offset)
        if limits:
            sql += f" {limits}"
        if options.for_update:
            lock = self.dialect.for_update()
            if lock:
                sql += f" {lock}"
        return Statement(sql, tuple(c.params))

    def count(
        self,
        meta: ModelMeta,
        conditions: Conditions = None,
        options: FindOptions | None = None,
    ) -> Statement:
        options = options or FindOptions()
        c = self._compiler()
        sql = self._with_clause(c, meta, options)
        sql += f"SELECT COUNT(*) AS count FROM {self.dialect.identifier(meta.table_name)}"
        sql += self._join(c, options)
        where = c.where([*meta.default_filter, *normalize_conditions(conditions)], self._scope(meta))
        if where:
            sql += f" WHERE {where}"
        return Statement(sql, tuple(c.params))

    def select_keys(
        self,
        meta: ModelMeta,
        conditions: Conditions,
        *,
        operation: str,
        for_update: bool = True,
    ) -> Statement:
        """Primary keys of the rows a write is about to touch (for dialects without RETURNING)."""
        pk = meta.require_primary_key(operation)
        c = self._compiler()
        where = self._required_where(c, meta, conditions, operation)
        cols = ", ".join(c.name(k) for k in pk)
        sql = f"SELECT {cols} FROM {self.dialect.identifier(meta.write_table)} WHERE {where}"
        if for_update:
            lock = self.dialect.for_update()
            if lock:
                sql += f" {lock}"
        return Statement(sql, tuple(c.params))

    def key_condition(self, meta: ModelMeta, keys: PkeyResult | Sequence[Any]) -> Any:
        """Condition entry matching a primary-key matrix (or a PkeyResult)."""
        pk = meta.require_primary_key("find_by_id")
        if isinstance(keys, PkeyResult):
            if tuple(keys.key) != pk:
                raise ContractError(
                    f"PkeyResult key {list(keys.key)!r} does not match {meta.name} primary key {list(pk)!r}",
                    constraint="primary_key",
                )
            rows = list(keys.values)
        else:
            rows = [tuple(r) if isinstance(r, (list, tuple)) else (r,) for r in keys]
        for row in rows:
            if len(row) != len(pk):
                raise ArityError(
                    f"key row {row!r} has {len(row)} values for {len(pk)} primary key columns",
                    value=row,
                    constraint="arity",
                )
        if len(pk) == 1:
            return (pk[0], [r[0] for r in rows])
        return TupleIn(pk, tuple(rows))

    # -- Writes --------------------------------------------------------------

    def insert(
        self,
        meta: ModelMeta,
        rows: Sequence[Values],
        options: InsertOptions | None = None,
    ) -> Statement:
        options = options or InsertOptions()
        meta.require_writable("create")
        if not rows:
            raise ContractError("create needs at least one row", constraint="values")
        normalized = [self.normalize_row(meta, row) for row in rows]
        columns = _union_columns(normalized)
        c = self._compiler()
        table = self.dialect.identifier(meta.write_table)
        verb = self.dialect.insert_verb(options.on_conflict_ignore)
        if not columns:
            if len(normalized) > 1:
                raise ContractError("multi-row create needs at least one column", constraint="values")
            sql = f"{verb} {table} {self._default_values()}"
        else:
            names = ", ".join(c.name(col) for col in columns)
            tuples = ", ".join(
                "(" + ", ".join(c.value(row.get(col)) for col in columns) + ")" for row in normalized
            )
            sql = f"{verb} {table} ({names}) VALUES {tuples}"
        conflict = [c.name(col) for col in options.on_conflict or ()]
        updates = self._conflict_updates(c, options, columns)
        if conflict or options.on_conflict_ignore or updates:
            clause = self.dialect.upsert_clause(conflict, updates, options.on_conflict_ignore)
            if clause:
                sql += f" {clause}"
        sql += self._returning(c, meta, options.returning)
        return Statement(sql, tuple(c.params))

    def update(
        self,
        meta: ModelMeta,
        conditions: Conditions,
        values: Values,
        options: WriteOptions | None = None,
    ) -> Statement:
        options = options or WriteOptions()
        meta.require_writable("update")
        row = self.normalize_row(meta, values)
        if not row:
            raise ContractError("update needs at least one value", constraint="values")
        c = self._compiler()
        sets = ", ".join(f"{c.name(col)} = {c.value(v)}" for col, v in row.items())
        table = self.dialect.identifier(meta.write_table)
        where = self._required_where(c, meta, conditions, "update")
        sql = f"UPDATE {table} SET {sets} WHERE {where}"
        sql += self._returning(c, meta, options.returning)
        return Statement(sql, tuple(c.params))

    def delete(
        self,
        meta: ModelMeta,
        conditions: Conditions,
        options: WriteOptions | None = None,
    ) -> Statement:
        options = options or WriteOptions()
        meta.require_writable("delete")
        c = self._compiler()
        where = self._required_where(c, meta, conditions, "delete")
        sql = f"DELETE FROM {self.dialect.identifier(meta.write_table)} WHERE {where}"
        sql += self._returning(c, meta, options.returning)
        return Statement(sql, tuple(c.params))

    def update_many(
        self,
        meta: ModelMeta,
        rows: Sequence[Values],
        key_columns: Sequence[Column | str],
        options: WriteOptions | None = None,
    ) -> Statement:
        """One set-based UPDATE for many rows keyed by ``key_columns``.

        A column set by any row is assigned for every row: rows that do not
        mention it get NULL. A row that passes ``SKIP`` for a column keeps
        its current value through a per-column skip flag.
        """
        options = options or WriteOptions()
        meta.require_writable("update_many")
        if not rows:
            raise ContractError("update_many needs at least one row", constraint="values")
        keys = self.resolve_columns(meta, key_columns)
        if not keys:
            raise ContractError("update_many needs key columns", constraint="key_columns")

        normalized = [self.normalize_row(meta, row, keep_skip=True) for row in rows]
        set_columns: list[Column] = []
        skipped: set[Column] = set()
        for row in normalized:
            for key in keys:
                value = row.get(key, SKIP)
                if value is SKIP or value is None or value is NULL:
                    raise ContractError(
                        f"update_many row is missing key {key!r}",
                        field=key.column_name,
                        constraint="key_columns",
                    )
            for col, value in row.items():
                if col in keys:
                    continue
                if value is SKIP:
                    skipped.add(col)
                    continue
                if isinstance(value, (Raw, Dynamic, Predicate, ParentRef)) or (
                    isinstance(value, Sentinel) and value is not NULL
                ):
                    raise ContractError(
                        f"update_many binds plain values only, got {value!r} for {col!r}",
                        value=value,
                        constraint="values",
                    )
                if col not in set_columns:
                    set_columns.append(col)
        if not set_columns:
            raise ContractError("update_many has no columns to set", constraint="values")
        flagged = [col for col in set_columns if col in skipped]

        name = self.dialect.identifier
        spec = [UpdateManyColumn(name(k.column_name), "key", k.sql_type) for k in keys]
        spec += [UpdateManyColumn(name(s.column_name), "set", s.sql_type) for s in set_columns]
        spec += [
            UpdateManyColumn(f"_skip_{f.column_name}", "skip", "boolean", target=name(f.column_name))
            for f in flagged
        ]

        matrix: list[list[Any]] = []
        for row in normalized:
            values = [row[k] for k in keys]
            for col in set_columns:
                value = row.get(col)
                values.append(None if value is SKIP or value is NULL else value)
            values.extend(row.get(f) is SKIP for f in flagged)
            matrix.append(values)

        returning = None
        if options.returning and self.dialect.supports_returning and meta.primary_key:
            returning = [name(k.column_name) for k in meta.primary_key]
        return self.dialect.update_many(
            name(meta.write_table), spec, [name(k.column_name) for k in keys], matrix, returning
        )

    # -- Helpers -------------------------------------------------------------

    def _with_clause(self, c: _Compiler, meta: ModelMeta, options: FindOptions) -> str:
        ctes = []
        if options.cte:
            ctes.append(c.bind_fragment(options.cte, list(options.cte_params), "cte"))
        if meta.query is not None:
            query = c.bind_fragment(meta.query, meta.query_params, f"{meta.name} query")
            ctes.append(f"{self.dialect.identifier(meta.table_name)} AS ({query})")
        return f"WITH {', '.join(ctes)} " if ctes else ""

    def _join(self, c: _Compiler, options: FindOptions) -> str:
        if not options.join:
            return ""
        return " " + c.bind_fragment(options.join, list(options.join_params), "join")

    def _select_list(self, c: _Compiler, options: FindOptions, table: str) -> str:
        select = options.select
        if select is None:
            return f"{table}.*" if options.join else "*"
        if isinstance(select, str):
            return select
        return ", ".join(c.name(s) for s in select)

    def _required_where(
        self, c: _Compiler, meta: ModelMeta, conditions: Conditions, operation: str
    ) -> str:
        where = c.where(normalize_conditions(conditions), self._scope(meta, meta.write_table))
        if where is None:
            raise ContractError(
                f"{operation} on {meta.name} requires at least one condition",
                constraint="conditions",
            ).with_context(model=meta.name, operation=operation)
        return where

    def _returning(self, c: _Compiler, meta: ModelMeta, wanted: bool) -> str:
        if not (wanted and self.dialect.supports_returning and meta.primary_key):
            return ""
        return " RETURNING " + ", ".join(c.name(k) for k in meta.primary_key)

    def _conflict_updates(
        self, c: _Compiler, options: InsertOptions, columns: list[Column]
    ) -> list[str] | None:
        if options.on_conflict_update is None:
            return None
        if options.on_conflict_update == "all":
            conflict = set(options.on_conflict or ())
            return [c.name(col) for col in columns if col not in conflict]
        return [c.name(col) for col in options.on_conflict_update]

    def _default_values(self) -> str:
        return self.dialect.default_values_clause

    def resolve_columns(self, meta: ModelMeta, keys: Iterable[Column | str]) -> list[Column]:
        """Columns of ``meta`` for a mix of Columns and property or column names."""
        return [self._own(meta, k) for k in keys]

    def _own(self, meta: ModelMeta, key: Any) -> Column:
        if isinstance(key, str):
            return meta.column(key)
        if not isinstance(key, Column):
            raise ContractError(f"value keys must be Columns, got {key!r}", value=key, constraint="value_shape")
        if not meta.owns(key):
            raise ContractError(
                f"{key!r} does not belong to {meta.name}",
                field=key.column_name,
                constraint="value_shape",
            )
        return key

    def normalize_row(
        self, meta: ModelMeta, values: Values, *, keep_skip: bool = False
    ) -> dict[Column, Any]:
        """Value entries as an ordered ``{Column: value}`` dict; SKIP entries dropped unless ``keep_skip``."""
        if isinstance(values, Mapping):
            items = list(values.items())
        else:
            items = list(values)
        row: dict[Column, Any] = {}
        for item in items:
            if not isinstance(item, tuple) or len(item) != 2:
                raise ContractError(
                    f"value entries are (Column, value) pairs, got {item!r}",
                    value=item,
                    constraint="value_shape",
                )
            key, value = item
            col = self._own(meta, key)
            if col in row:
                raise ContractError(f"{col!r} given twice", field=col.column_name, constraint="value_shape")
            if value is SKIP and not keep_skip:
                continue
            row[col] = value
        return row


def _union_columns(rows: Sequence[dict[Column, Any]]) -> list[Column]:
    columns: list[Column] = []
    for row in rows:
        for col in row:
            if col not in columns:
                columns.append(col)
    return columns


__all__ = [
    "SqlBuilder",
    "Values",
]
