"""Predicate objects for WHERE clauses.

A condition list is an ordered sequence of entries, AND-joined by the
builder. An entry is one of:

- ``(Column, value)``: ``=``, ``IN``, ``IS NULL`` ... chosen by value shape
- ``("column_name", value)``: same, by bare column name
- ``("expr ? AND ?", value)``: raw fragment, ``?`` bound from ``value``
- a predicate object from this module

Examples:
    >>> conditions = [
    ...     (User.active, True),
    ...     User.age.gte(18),
    ...     or_([(User.role, "admin")], [(User.role, "owner"), User.email.is_not_null()]),
    ...     exists(Post, [(Post.user_id, parent_ref(User.id))]),
    ... ]

Guardrails:
    ❌ DON'T: Interpolate caller values into fragment strings
    ✅ DO: Put ``?`` in the fragment and pass the value alongside it
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from tablespine.column import Column
    from tablespine.metadata import ModelMeta


class Predicate:
    """Marker base for condition objects that are not ``(key, value)`` pairs."""


@dataclass(frozen=True)
class Comparison(Predicate):
    column: Column | str
    operator: str
    value: Any


@dataclass(frozen=True)
class Between(Predicate):
    column: Column | str
    low: Any
    high: Any


@dataclass(frozen=True)
class TupleIn(Predicate):
    """``(c1, c2) IN ((?, ?), ...)``; an empty row list matches nothing."""

    columns: tuple[Column | str, ...]
    rows: tuple[tuple[Any, ...], ...]


@dataclass(frozen=True)
class OrGroup(Predicate):
    """OR of AND-groups: ``((a AND b) OR (c))``."""

    groups: tuple[tuple[Any, ...], ...]


@dataclass(frozen=True)
class RawCondition(Predicate):
    """Standalone fragment with its own bound values."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class ParentRef:
    """Correlation marker: resolves to ``column`` of the enclosing query's row inside a subquery.

    The column must belong to the model whose query contains the subquery.
    """

    column: Column


@dataclass(frozen=True)
class InSubquery(Predicate):
    """``parent_cols [NOT] IN (SELECT target_cols FROM target WHERE ...)``."""

    key_pairs: tuple[tuple[Column, Column], ...]
    conditions: tuple[Any, ...] = ()
    negate: bool = False


@dataclass(frozen=True)
class Exists(Predicate):
    """``[NOT] EXISTS (SELECT 1 FROM target WHERE ...)``."""

    target: ModelMeta
    conditions: tuple[Any, ...] = ()
    negate: bool = False


ConditionEntry = Union[tuple[Any, Any], Predicate]
Conditions = Union[Iterable[ConditionEntry], Mapping[Any, Any], None]


@dataclass
class ConditionList:
    """Mutable builder for condition lists.

    >>> conds = ConditionList()
    >>> conds.add(User.active, True).add_if(name, User.name, name)
    """

    entries: list[ConditionEntry] = field(default_factory=list)

    def add(self, key: Any, value: Any = None) -> ConditionList:
        if isinstance(key, Predicate):
            self.entries.append(key)
        else:
            self.entries.append((key, value))
        return self

    def add_if(self, flag: Any, key: Any, value: Any = None) -> ConditionList:
        if flag:
            self.add(key, value)
        return self

    def extend(self, conditions: Conditions) -> ConditionList:
        self.entries.extend(normalize_conditions(conditions))
        return self

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


# -- Factories ---------------------------------------------------------------


def or_(*groups: Conditions) -> OrGroup:
    """Join AND-groups with OR. Each group is itself a condition list."""
    return OrGroup(tuple(tuple(normalize_conditions(g)) for g in groups))


def tuple_in(columns: Sequence[Column | str], rows: Iterable[Sequence[Any]]) -> TupleIn:
    return TupleIn(tuple(columns), tuple(tuple(r) for r in rows))


def raw_condition(sql: str, *params: Any) -> RawCondition:
    return RawCondition(sql, tuple(params))


def parent_ref(column: Column) -> ParentRef:
    return ParentRef(column)


def in_subquery(
    key_pairs: Sequence[tuple[Column, Column]],
    conditions: Conditions = None,
) -> InSubquery:
    """``key_pairs`` are ``(calling_model_column, target_model_column)``."""
    return InSubquery(tuple(tuple(p) for p in key_pairs), tuple(normalize_conditions(conditions)))


def not_in_subquery(
    key_pairs: Sequence[tuple[Column, Column]],
    conditions: Conditions = None,
) -> InSubquery:
    return InSubquery(
        tuple(tuple(p) for p in key_pairs), tuple(normalize_conditions(conditions)), negate=True
    )


def exists(target: Any, conditions: Conditions = None) -> Exists:
    """``target`` is a model class or its :class:`~tablespine.metadata.ModelMeta`."""
    return Exists(_meta_of(target), tuple(normalize_conditions(conditions)))


def not_exists(target: Any, conditions: Conditions = None) -> Exists:
    return Exists(_meta_of(target), tuple(normalize_conditions(conditions)), negate=True)


def _meta_of(target: Any) -> ModelMeta:
    return getattr(target, "__meta__", target)


def normalize_conditions(conditions: Conditions) -> list[ConditionEntry]:
    """Accept ``None``, a mapping, or an iterable of entries; return a list."""
    if conditions is None:
        return []
    if isinstance(conditions, Mapping):
        return list(conditions.items())
    if isinstance(conditions, (Predicate, ConditionList)):
        return [conditions] if isinstance(conditions, Predicate) else list(conditions)
    return list(conditions)


__all__ = [
    "Predicate",
    "Comparison",
    "Between",
    "TupleIn",
    "OrGroup",
    "RawCondition",
    "ParentRef",
    "InSubquery",
    "Exists",
    "ConditionEntry",
    "Conditions",
    "ConditionList",
    "or_",
    "tuple_in",
    "raw_condition",
    "parent_ref",
    "in_subquery",
    "not_in_subquery",
    "exists",
    "not_exists",
    "normalize_conditions",
]
