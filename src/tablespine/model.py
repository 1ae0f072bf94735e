"""
Model facade - typed declaration surface over the core.

A model is a class with one :func:`column` call per field. Class creation
turns those calls into immutable :class:`~tablespine.column.Column`
records and collects them, with the table options given as class
keywords, into the model's :class:`~tablespine.metadata.ModelMeta`.

Manifesto:
    Declaration is explicit and happens once, at class creation. After
    that, ``User.email`` is a ``Column`` (the vocabulary of every query)
    and ``user.email`` is the loaded value.

Architecture:
    ::

        class User(AppModel, table="users")     ──► __init_subclass__
            id = column(primary_key=True)                │ Column(...) per field
            email = column()                             │ register_model_tag()
            posts = has_many(lambda: Post, ...)          ▼
                                                  User.__meta__ : ModelMeta
        AppModel.bind(db)                         User.database() : Database

        User.find(conds) ──► operations.find ──► middleware ──► builder ──► db

Examples:
    >>> class AppModel(Model):
    ...     pass
    >>> class User(AppModel, table="users", default_order=["id"]):
    ...     id = column(primary_key=True)
    ...     email = column()
    ...     active = column(converter=bool)
    >>> AppModel.bind(db)
    >>> async def signup():
    ...     return await User.create([(User.email, "ada@example.com"), (User.active, True)])
    >>> keys = await User.transaction(signup)
    >>> [user] = await User.find_by_id(keys)

Guardrails:
    ❌ DON'T: Pass bare strings where a Column exists
    ✅ DO: ``(User.email, value)``; names are for fragments and relations

Tags:
    model, facade, declaration, tablespine
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from typing import Any, ClassVar, TypeVar

from tablespine import operations
from tablespine.builder import Values
from tablespine.column import Column
from tablespine.conditions import Conditions
from tablespine.database import Database
from tablespine.errors import ConfigError, ContractError
from tablespine.metadata import ModelMeta, build_meta, register_model_meta, register_model_tag
from tablespine.relations import RecordBatch, RelationProperty, clear_relation_cache, preload
from tablespine.types import (
    FindOptions,
    InsertOptions,
    PkeyResult,
    QueryResult,
    TransactionOptions,
    WriteOptions,
)

M = TypeVar("M", bound="Model")
T = TypeVar("T")


class ColumnSpec:
    """Unbound field declaration; replaced by a :class:`ColumnAttribute` at class creation."""

    def __init__(
        self,
        name: str | None = None,
        *,
        primary_key: bool = False,
        sql_type: str | None = None,
        converter: Callable[[Any], Any] | None = None,
    ):
        self.name = name
        self.primary_key = primary_key
        self.sql_type = sql_type
        self.converter = converter

    def bind(self, property_name: str, table_name: str, model_tag: str) -> Column:
        return Column(
            column_name=self.name or property_name,
            property_name=property_name,
            table_name=table_name,
            model_tag=model_tag,
            sql_type=self.sql_type,
            primary_key=self.primary_key,
            converter=self.converter,
        )


class ColumnAttribute:
    """``Model.field`` is the Column; ``instance.field`` is the loaded value."""

    def __init__(self, column: Column):
        self.column = column

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self.column
        return instance._values.get(self.column.property_name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance._values[self.column.property_name] = value


def column(
    name: str | None = None,
    *,
    primary_key: bool = False,
    sql_type: str | None = None,
    converter: Callable[[Any], Any] | None = None,
) -> Any:
    """Declare a field. ``name`` is the column name when it differs from the attribute."""
    return ColumnSpec(name, primary_key=primary_key, sql_type=sql_type, converter=converter)


def _with(options: Any, default: type, overrides: dict[str, Any]) -> Any:
    options = options or default()
    return replace(options, **overrides) if overrides else options


class Model:
    """
    Base class for models.

    Class keywords:
        table: Table name; for query-based models, the CTE alias.
        query / query_params: Expose a SELECT as the model's table.
        update_table: Table writes go to (query-based models).
        tag: Model tag; defaults to ``module.QualifiedName``.
        default_filter / default_order / default_group: Applied to reads.
            Each may be a callable taking the class, for references to its
            own columns.
        find_hard_limit / has_many_hard_limit: Per-model row limits.

    A class without ``table`` is an abstract base: it declares nothing and
    is typically used to ``bind()`` a group of models to one database.
    """

    __meta__: ClassVar[ModelMeta]
    __columns_by_name__: ClassVar[dict[str, Column]]
    _database: ClassVar[Database | None] = None

    def __init_subclass__(
        cls,
        *,
        table: str | None = None,
        query: str | None = None,
        query_params: Sequence[Any] = (),
        update_table: str | None = None,
        tag: str | None = None,
        default_filter: Any = None,
        default_order: Any = (),
        default_group: Any = (),
        find_hard_limit: int | None = None,
        has_many_hard_limit: int | None = None,
        **kwargs: Any,
    ):
        super().__init_subclass__(**kwargs)
        if table is None:
            if query is not None:
                raise ContractError(f"{cls.__name__}: query-based models need table= as the CTE alias")
            return

        owner = f"{cls.__module__}.{cls.__qualname__}"
        model_tag = tag or owner
        register_model_tag(model_tag, owner)

        specs: dict[str, ColumnSpec] = {}
        for base in reversed(cls.__mro__):
            for name, value in vars(base).items():
                if isinstance(value, ColumnSpec):
                    specs[name] = value

        columns = []
        for name, spec in specs.items():
            col = spec.bind(name, table, model_tag)
            setattr(cls, name, ColumnAttribute(col))
            columns.append(col)

        def _value(option: Any) -> Any:
            return option(cls) if callable(option) and not isinstance(option, Column) else option

        cls.__meta__ = build_meta(
            model_tag,
            table,
            columns,
            update_table_name=update_table,
            query=query,
            query_params=query_params,
            default_filter=_value(default_filter),
            default_order=_value(default_order),
            default_group=_value(default_group),
            find_hard_limit=find_hard_limit,
            has_many_hard_limit=has_many_hard_limit,
        )
        register_model_meta(cls.__meta__)
        cls.__columns_by_name__ = {c.column_name: c for c in columns}
        for name, value in vars(cls).items():
            if isinstance(value, RelationProperty):
                cls.__meta__.relations[name] = value

    # -- Instances -----------------------------------------------------------

    def __init__(self, **values: Any):
        self._values: dict[str, Any] = {}
        self._extra: dict[str, Any] = {}
        self._relations: dict[str, Any] = {}
        self._batch: RecordBatch | None = None
        for name, value in values.items():
            if not isinstance(getattr(type(self), name, None), Column):
                raise ContractError(f"{type(self).__name__} has no column {name!r}", field=name)
            self._values[name] = value

    @classmethod
    def _from_row(cls: type[M], row: dict[str, Any]) -> M:
        instance = cls.__new__(cls)
        Model.__init__(instance)
        for key, value in row.items():
            col = cls.__columns_by_name__.get(key)
            if col is None:
                instance._extra[key] = value
                continue
            if col.converter is not None and value is not None:
                value = col.converter(value)
            instance._values[col.property_name] = value
        return instance

    @classmethod
    def _from_rows(cls: type[M], rows: Sequence[dict[str, Any]]) -> list[M]:
        instances = [cls._from_row(row) for row in rows]
        if len(instances) > 1:
            RecordBatch(instances)
        return instances

    def get(self, name: str, default: Any = None) -> Any:
        """Value by property name, or an extra selected column by name."""
        if name in self._values:
            return self._values[name]
        return self._extra.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        return {**self._extra, **self._values}

    @property
    def pkey(self) -> tuple[Any, ...]:
        return tuple(self._values.get(c.property_name) for c in self.__meta__.primary_key)

    def clear_relation_cache(self, name: str | None = None) -> None:
        clear_relation_cache(self, name)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        return f"{type(self).__name__}({fields})"

    # -- Binding -------------------------------------------------------------

    @classmethod
    def bind(cls, database: Database) -> None:
        """Bind this class (and every subclass without its own binding) to ``database``."""
        cls._database = database

    @classmethod
    def database(cls) -> Database:
        if cls._database is None:
            raise ConfigError(f"{cls.__name__} is not bound to a Database; call bind(db) on it or a base model")
        return cls._database

    # -- Reads ---------------------------------------------------------------

    @classmethod
    async def find(cls: type[M], conditions: Conditions = None, options: FindOptions | None = None, **kwargs: Any) -> list[M]:
        return await operations.find(cls, conditions, _with(options, FindOptions, kwargs))

    @classmethod
    async def find_one(
        cls: type[M], conditions: Conditions = None, options: FindOptions | None = None, **kwargs: Any
    ) -> M | None:
        return await operations.find_one(cls, conditions, _with(options, FindOptions, kwargs))

    @classmethod
    async def find_by_id(cls: type[M], keys: Any, options: FindOptions | None = None, **kwargs: Any) -> list[M]:
        return await operations.find_by_id(cls, keys, _with(options, FindOptions, kwargs))

    @classmethod
    async def count(cls, conditions: Conditions = None, options: FindOptions | None = None, **kwargs: Any) -> int:
        return await operations.count(cls, conditions, _with(options, FindOptions, kwargs))

    # -- Writes --------------------------------------------------------------

    @classmethod
    async def create(cls, values: Values, options: InsertOptions | None = None, **kwargs: Any) -> PkeyResult | None:
        return await operations.create(cls, values, _with(options, InsertOptions, kwargs))

    @classmethod
    async def create_many(
        cls, rows: Sequence[Values], options: InsertOptions | None = None, **kwargs: Any
    ) -> PkeyResult | None:
        return await operations.create_many(cls, rows, _with(options, InsertOptions, kwargs))

    @classmethod
    async def update(
        cls, conditions: Conditions, values: Values, options: WriteOptions | None = None, **kwargs: Any
    ) -> PkeyResult | None:
        return await operations.update(cls, conditions, values, _with(options, WriteOptions, kwargs))

    @classmethod
    async def update_many(
        cls,
        rows: Sequence[Values],
        key_columns: Sequence[Column | str] | Column | str,
        options: WriteOptions | None = None,
        **kwargs: Any,
    ) -> PkeyResult | None:
        if isinstance(key_columns, (Column, str)):
            key_columns = [key_columns]
        return await operations.update_many(cls, rows, list(key_columns), _with(options, WriteOptions, kwargs))

    @classmethod
    async def delete(cls, conditions: Conditions, options: WriteOptions | None = None, **kwargs: Any) -> PkeyResult | None:
        return await operations.delete(cls, conditions, _with(options, WriteOptions, kwargs))

    # -- Raw SQL -------------------------------------------------------------

    @classmethod
    async def execute(cls, sql: str, params: Sequence[Any] = (), *, autocommit: bool = False) -> QueryResult:
        return await operations.execute(cls, sql, params, autocommit=autocommit)

    @classmethod
    async def query(cls: type[M], sql: str, params: Sequence[Any] = ()) -> list[M]:
        return await operations.query(cls, sql, params)

    # -- Transactions and relations ------------------------------------------

    @classmethod
    async def transaction(
        cls, fn: Callable[[], Awaitable[T]], options: TransactionOptions | None = None, **kwargs: Any
    ) -> T:
        return await cls.database().transaction(fn, _with(options, TransactionOptions, kwargs))

    @classmethod
    async def with_writer(cls, fn: Callable[[], Awaitable[T]]) -> T:
        return await cls.database().with_writer(fn)

    @classmethod
    async def load_relations(cls, records: Sequence[Any], *names: str) -> None:
        """Batch-load ``names`` for ``records`` now instead of on first access."""
        await preload(records, *names)


__all__ = [
    "Model",
    "ColumnSpec",
    "ColumnAttribute",
    "column",
]
