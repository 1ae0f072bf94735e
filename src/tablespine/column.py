"""Column references and ordering descriptors.

A :class:`Column` is the vocabulary of every condition, value list and
ordering expression. It identifies one ``(table, column, declared type)``
triple and is compared by ``(model_tag, column_name)`` so it can be used
as a dictionary key.

Examples:
    >>> users_id = Column("id", "id", "users", "User", primary_key=True)
    >>> users_id()
    'id'
    >>> f"{users_id} > 10"
    'id > 10'
    >>> users_id.gt(10)
    Comparison(column=Column(users.id), operator='>', value=10)
    >>> users_id.desc_nulls_last()
    OrderColumn(column=Column(users.id), direction=<SortDirection.DESC: 'DESC'>, nulls=<NullsOrder.LAST: 'LAST'>)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tablespine.conditions import Between, Comparison
from tablespine.sentinels import NOT_NULL, NULL


@dataclass(frozen=True, eq=False)
class Column:
    """Immutable handle for one column of one model."""

    column_name: str
    property_name: str
    table_name: str
    model_tag: str
    sql_type: str | None = None
    primary_key: bool = False
    converter: Callable[[Any], Any] | None = field(default=None, repr=False)

    # -- Identity -----------------------------------------------------------

    @property
    def key(self) -> tuple[str, str]:
        return (self.model_tag, self.column_name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Column):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __call__(self) -> str:
        return self.column_name

    def __str__(self) -> str:
        return self.column_name

    def __repr__(self) -> str:
        return f"Column({self.table_name}.{self.column_name})"

    @property
    def qualified(self) -> str:
        """``table.column`` form, used for correlated references."""
        return f"{self.table_name}.{self.column_name}"

    # -- Condition helpers --------------------------------------------------

    def eq(self, value: Any) -> tuple[Column, Any]:
        return (self, value)

    def ne(self, value: Any) -> Comparison:
        return Comparison(self, "!=", value)

    def gt(self, value: Any) -> Comparison:
        return Comparison(self, ">", value)

    def gte(self, value: Any) -> Comparison:
        return Comparison(self, ">=", value)

    def lt(self, value: Any) -> Comparison:
        return Comparison(self, "<", value)

    def lte(self, value: Any) -> Comparison:
        return Comparison(self, "<=", value)

    def like(self, pattern: str) -> Comparison:
        return Comparison(self, "LIKE", pattern)

    def not_like(self, pattern: str) -> Comparison:
        return Comparison(self, "NOT LIKE", pattern)

    def ilike(self, pattern: str) -> Comparison:
        """Case-insensitive LIKE; emulated with LOWER() where ILIKE is missing."""
        return Comparison(self, "ILIKE", pattern)

    def between(self, low: Any, high: Any) -> Between:
        return Between(self, low, high)

    def in_(self, values: Iterable[Any]) -> tuple[Column, list[Any]]:
        return (self, list(values))

    def not_in(self, values: Iterable[Any]) -> Comparison:
        return Comparison(self, "NOT IN", list(values))

    def is_null(self) -> tuple[Column, Any]:
        return (self, NULL)

    def is_not_null(self) -> tuple[Column, Any]:
        return (self, NOT_NULL)

    # -- Ordering helpers ---------------------------------------------------

    def asc(self) -> OrderColumn:
        return OrderColumn(self, SortDirection.ASC)

    def desc(self) -> OrderColumn:
        return OrderColumn(self, SortDirection.DESC)

    def asc_nulls_first(self) -> OrderColumn:
        return OrderColumn(self, SortDirection.ASC, NullsOrder.FIRST)

    def asc_nulls_last(self) -> OrderColumn:
        return OrderColumn(self, SortDirection.ASC, NullsOrder.LAST)

    def desc_nulls_first(self) -> OrderColumn:
        return OrderColumn(self, SortDirection.DESC, NullsOrder.FIRST)

    def desc_nulls_last(self) -> OrderColumn:
        return OrderColumn(self, SortDirection.DESC, NullsOrder.LAST)


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class NullsOrder(str, Enum):
    FIRST = "FIRST"
    LAST = "LAST"


@dataclass(frozen=True)
class OrderColumn:
    """One ORDER BY term. Rendering is dialect-specific (see ``Dialect.order_term``)."""

    column: Column | str
    direction: SortDirection = SortDirection.ASC
    nulls: NullsOrder | None = None

    @property
    def name(self) -> str:
        return str(self.column)


def as_order(term: OrderColumn | Column | str) -> OrderColumn:
    """Normalize a bare column (or name) into an ascending :class:`OrderColumn`."""
    if isinstance(term, OrderColumn):
        return term
    return OrderColumn(term)


__all__ = [
    "Column",
    "OrderColumn",
    "SortDirection",
    "NullsOrder",
    "as_order",
]
