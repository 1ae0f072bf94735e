"""
Relations and the N+1-safe batch loader.

A relation is declared on a model class with :func:`has_many`,
:func:`has_one` or :func:`belongs_to`. Its target and key pairs are given
as resolvers and resolved once, on first use, so models may reference
each other before both are defined.

Manifesto:
    Records that were loaded together are related together. The first
    ``await user.posts`` on any user of a 50-row result set loads posts
    for all 50 users in one query and caches each user's slice; the other
    49 awaits never touch the database.

Architecture:
    ::

        User.find(...) ──► [u1, u2, ... u50] ──► RecordBatch (shared)
                                                      │
        await u7.posts ──► lock(batch, "posts") ──► load_batch()
                                                      │ distinct local keys
                                                      ▼
              SELECT * FROM posts WHERE user_id IN (?, ?, ...) ORDER BY ..., id
                                                      │ partition by key
                                                      ▼
                              u1._relations["posts"] = [...]  ... u50

Relation variants:
    ==========  ======================================  ===============
    HasMany     target rows whose foreign key matches   list (may be [])
    HasOne      same, single-valued                     instance | None
    BelongsTo   target row referenced by a local key    instance | None
    ==========  ======================================  ===============

Examples:
    >>> class User(Model, table="users"):
    ...     id = column(primary_key=True)
    ...     posts = has_many(lambda: Post, [("id", "user_id")], order=lambda: [Post.id.desc()])
    >>> class Post(Model, table="posts"):
    ...     id = column(primary_key=True)
    ...     user_id = column()
    ...     author = belongs_to(lambda: User, [("user_id", "id")])
    >>> users = await User.find()
    >>> posts = await users[0].posts          # one query for every user in `users`

Guardrails:
    ❌ DON'T: Loop over records issuing ``find()`` per record
    ✅ DO: Declare a relation and await it; the batch loads once

Tags:
    relations, lazy-loading, batch-loading, n-plus-one, tablespine
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from tablespine import operations
from tablespine.column import Column, OrderColumn, as_order
from tablespine.conditions import ConditionEntry, TupleIn, normalize_conditions
from tablespine.errors import ContractError, LimitExceededError, LimitOrigin
from tablespine.logging import get_logger
from tablespine.metadata import ModelMeta
from tablespine.types import FindOptions

logger = get_logger(__name__)


# =============================================================================
# Variants
# =============================================================================


@dataclass(frozen=True)
class HasMany:
    target: type
    key_pairs: tuple[tuple[Column, Column], ...]
    order: tuple[OrderColumn, ...] = ()
    where: tuple[ConditionEntry, ...] = ()
    hard_limit: int | bool | None = None


@dataclass(frozen=True)
class HasOne:
    target: type
    key_pairs: tuple[tuple[Column, Column], ...]
    order: tuple[OrderColumn, ...] = ()
    where: tuple[ConditionEntry, ...] = ()


@dataclass(frozen=True)
class BelongsTo:
    target: type
    key_pairs: tuple[tuple[Column, Column], ...]
    order: tuple[OrderColumn, ...] = ()
    where: tuple[ConditionEntry, ...] = ()


Relation = Union[HasMany, HasOne, BelongsTo]

_KINDS: dict[str, type] = {"has_many": HasMany, "has_one": HasOne, "belongs_to": BelongsTo}


# =============================================================================
# Declaration
# =============================================================================


class RelationProperty:
    """
    Descriptor for a declared relation.

    On the class it returns itself; on an instance it returns an awaitable
    resolving to the related record(s).
    """

    def __init__(
        self,
        kind: str,
        target: Callable[[], type],
        keys: Any,
        *,
        order: Any = None,
        where: Any = None,
        hard_limit: int | bool | None = None,
    ):
        if kind not in _KINDS:
            raise ContractError(f"unknown relation kind {kind!r}", value=kind)
        self.kind = kind
        self._target = target
        self._keys = keys
        self._order = order
        self._where = where
        self._hard_limit = hard_limit
        self._resolved: Relation | None = None
        self.name = ""
        self.owner: type | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return load_relation(instance, self)

    def __repr__(self) -> str:
        owner = self.owner.__name__ if self.owner else "?"
        return f"RelationProperty({self.kind}, {owner}.{self.name})"

    def resolve(self) -> Relation:
        """Resolve target, key pairs, order and filter once; cached afterwards."""
        if self._resolved is not None:
            return self._resolved

        target = _resolve(self._target)
        source_meta: ModelMeta = self.owner.__meta__
        target_meta: ModelMeta = target.__meta__

        pairs = _resolve(self._keys)
        if pairs and not isinstance(pairs[0], (tuple, list)):
            pairs = [pairs]
        if not pairs:
            raise ContractError(f"relation {self!r} declares no key pairs", constraint="relation")
        key_pairs = tuple(
            (_own_column(source_meta, local), _own_column(target_meta, foreign)) for local, foreign in pairs
        )

        order = _resolve(self._order) or ()
        if isinstance(order, (Column, OrderColumn, str)):
            order = [order]
        where = _resolve(self._where)
        order_terms = tuple(as_order(t) for t in order)
        where_terms = tuple(normalize_conditions(where))

        match self.kind:
            case "has_many":
                limit = self._hard_limit
                if limit is True:
                    raise ContractError("hard_limit must be an int, None or False", value=limit)
                resolved: Relation = HasMany(target, key_pairs, order_terms, where_terms, limit)
            case "has_one":
                resolved = HasOne(target, key_pairs, order_terms, where_terms)
            case _:
                resolved = BelongsTo(target, key_pairs, order_terms, where_terms)
        self._resolved = resolved
        return resolved


def _resolve(value: Any) -> Any:
    """Call zero-argument resolvers; classes and Columns are values, not resolvers."""
    if callable(value) and not isinstance(value, (type, Column)):
        return value()
    return value


def _own_column(meta: ModelMeta, ref: Column | str) -> Column:
    if isinstance(ref, str):
        return meta.column(ref)
    if not meta.owns(ref):
        raise ContractError(
            f"relation key {ref!r} does not belong to {meta.name}",
            field=ref.column_name,
            constraint="relation",
        )
    return ref


def has_many(
    target: Callable[[], type],
    keys: Any,
    *,
    order: Any = None,
    where: Any = None,
    hard_limit: int | bool | None = None,
) -> RelationProperty:
    """One-to-many. ``keys`` is ``[(local, foreign), ...]`` (Columns or names) or a resolver.

    ``hard_limit`` overrides the model / settings ``has_many_hard_limit``;
    ``False`` disables the check for this relation.
    """
    return RelationProperty("has_many", target, keys, order=order, where=where, hard_limit=hard_limit)


def has_one(target: Callable[[], type], keys: Any, *, order: Any = None, where: Any = None) -> RelationProperty:
    return RelationProperty("has_one", target, keys, order=order, where=where)


def belongs_to(target: Callable[[], type], keys: Any, *, order: Any = None, where: Any = None) -> RelationProperty:
    return RelationProperty("belongs_to", target, keys, order=order, where=where)


# =============================================================================
# Batches
# =============================================================================


@dataclass(eq=False)
class RecordBatch:
    """Records loaded by one query; relations load for all of them at once."""

    records: list[Any]
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for record in self.records:
            record._batch = self

    def lock(self, relation: str) -> asyncio.Lock:
        lock = self._locks.get(relation)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[relation] = lock
        return lock


async def load_relation(instance: Any, prop: RelationProperty) -> Any:
    """Value of ``prop`` for ``instance``, loading it for the whole batch on a miss."""
    cache = instance._relations
    if prop.name in cache:
        return cache[prop.name]
    batch = instance._batch or RecordBatch([instance])
    async with batch.lock(prop.name):
        if prop.name not in cache:
            pending = [r for r in batch.records if prop.name not in r._relations]
            await load_batch(pending, prop)
    return cache[prop.name]


async def load_batch(records: Sequence[Any], prop: RelationProperty) -> None:
    """Load ``prop`` for every record in ``records`` with one query."""
    relation = prop.resolve()
    locals_ = [local for local, _ in relation.key_pairs]
    foreigns = [foreign for _, foreign in relation.key_pairs]

    keys: list[tuple[Any, ...]] = []
    seen: set[tuple[Any, ...]] = set()
    for record in records:
        key = _key_of(record, locals_)
        if key is not None and key not in seen:
            seen.add(key)
            keys.append(key)

    groups: dict[tuple[Any, ...], list[Any]] = {}
    if keys:
        target = relation.target
        target_meta: ModelMeta = target.__meta__
        if len(foreigns) == 1:
            condition: Any = (foreigns[0], [k[0] for k in keys])
        else:
            condition = TupleIn(tuple(foreigns), tuple(keys))

        # Primary key last so single-valued relations pick the lowest key
        # when several rows match; declared order still takes precedence.
        order = [*relation.order, *(as_order(k) for k in target_meta.primary_key)]
        limit = _hard_limit(prop, relation)
        options = FindOptions(order=order, limit=limit + 1 if limit is not None else None)

        statement = target.database().builder.select(target_meta, [condition, *relation.where], options)
        rows = await operations.fetch(target, statement)
        if limit is not None and len(rows) > limit:
            raise LimitExceededError(
                limit,
                len(rows),
                origin=LimitOrigin.RELATION,
                model_name=prop.owner.__meta__.name,
                relation_name=prop.name,
            )
        for row in rows:
            groups.setdefault(_key_of(row, foreigns, allow_null=True), []).append(row)

        logger.debug(
            "relation_batch_loaded",
            model=prop.owner.__meta__.name,
            relation=prop.name,
            records=len(records),
            keys=len(keys),
            rows=len(rows),
        )

    for record in records:
        key = _key_of(record, locals_)
        matches = groups.get(key, []) if key is not None else []
        match relation:
            case HasMany():
                record._relations[prop.name] = list(matches)
            case HasOne() | BelongsTo():
                # Several matches for a single-valued relation are not an
                # error: the first row in (declared order, primary key) wins.
                record._relations[prop.name] = matches[0] if matches else None


def _hard_limit(prop: RelationProperty, relation: Relation) -> int | None:
    if not isinstance(relation, HasMany):
        return None
    if relation.hard_limit is False:
        return None
    if relation.hard_limit is not None:
        return relation.hard_limit
    owner_meta: ModelMeta = prop.owner.__meta__
    if owner_meta.has_many_hard_limit is not None:
        return owner_meta.has_many_hard_limit
    return prop.owner.database().settings.has_many_hard_limit


def _key_of(record: Any, columns: Sequence[Column], *, allow_null: bool = False) -> tuple[Any, ...] | None:
    key = tuple(record._values.get(c.property_name) for c in columns)
    if not allow_null and any(v is None for v in key):
        return None
    return key


async def preload(records: Sequence[Any], *names: str) -> None:
    """Eagerly load relations ``names`` for ``records`` (one query per relation)."""
    if not records:
        return
    batch = RecordBatch(list(records))
    model = type(batch.records[0])
    for name in names:
        prop = getattr(model, name, None)
        if not isinstance(prop, RelationProperty):
            raise ContractError(f"{model.__name__} has no relation {name!r}", field=name)
        async with batch.lock(name):
            pending = [r for r in batch.records if name not in r._relations]
            if pending:
                await load_batch(pending, prop)


def clear_relation_cache(instance: Any, name: str | None = None) -> None:
    """Forget cached relation values so the next access re-fetches."""
    if name is None:
        instance._relations.clear()
    else:
        instance._relations.pop(name, None)


__all__ = [
    "HasMany",
    "HasOne",
    "BelongsTo",
    "Relation",
    "RelationProperty",
    "RecordBatch",
    "has_many",
    "has_one",
    "belongs_to",
    "load_relation",
    "load_batch",
    "preload",
    "clear_relation_cache",
]
