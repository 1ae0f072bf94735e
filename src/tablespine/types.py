"""Result and option types shared by the builder, manager and facade."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from tablespine.errors import ArityError

if TYPE_CHECKING:
    from tablespine.column import Column, OrderColumn


@dataclass(frozen=True)
class Statement:
    """Builder output: SQL with ``?`` markers and the params in marker order."""

    sql: str
    params: tuple[Any, ...] = ()

    def __iter__(self) -> Iterator[Any]:
        yield self.sql
        yield self.params


@dataclass
class QueryResult:
    """Driver-neutral result of one statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    last_insert_id: int | None = None


@dataclass(frozen=True)
class PkeyResult:
    """
    Primary-key columns plus one row of key values per affected record.

    Returned by every write operation and accepted by ``find_by_id`` so a
    write can be followed by an exact re-fetch.

    >>> result = PkeyResult((User.id,), ((1,), (2,)))
    >>> result.first()
    (1,)
    >>> result.as_dicts()
    [{'id': 1}, {'id': 2}]
    """

    key: tuple[Column, ...]
    values: tuple[tuple[Any, ...], ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", tuple(self.key))
        rows = tuple(tuple(row) for row in self.values)
        width = len(self.key)
        for row in rows:
            if len(row) != width:
                raise ArityError(
                    f"PkeyResult row {row!r} has {len(row)} values for {width} key columns",
                    value=row,
                    constraint="arity",
                )
        object.__setattr__(self, "values", rows)

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[tuple[Any, ...]]:
        return iter(self.values)

    def first(self) -> tuple[Any, ...] | None:
        return self.values[0] if self.values else None

    def as_dicts(self) -> list[dict[str, Any]]:
        names = [c.property_name for c in self.key]
        return [dict(zip(names, row)) for row in self.values]

    @classmethod
    def from_rows(cls, key: Sequence[Column], rows: Sequence[dict[str, Any]]) -> PkeyResult:
        """Build from driver rows keyed by column name."""
        return cls(tuple(key), tuple(tuple(row[c.column_name] for c in key) for row in rows))


# -- Options -----------------------------------------------------------------


@dataclass(frozen=True)
class FindOptions:
    """Options for find / count / find_by_id."""

    order: Sequence[OrderColumn | Column | str] | None = None
    limit: int | None = None
    offset: int | None = None
    select: Sequence[Column | str] | str | None = None
    group: Sequence[Column | str] | None = None
    join: str | None = None
    join_params: Sequence[Any] = ()
    cte: str | None = None
    cte_params: Sequence[Any] = ()
    for_update: bool = False


@dataclass(frozen=True)
class InsertOptions:
    """Options for create / create_many.

    ``on_conflict`` names the conflict target. With it, either
    ``on_conflict_ignore`` (DO NOTHING) or ``on_conflict_update``
    (columns to overwrite, or ``"all"`` for every non-key inserted column).
    """

    on_conflict: Sequence[Column] | None = None
    on_conflict_ignore: bool = False
    on_conflict_update: Sequence[Column] | Literal["all"] | None = None
    returning: bool = True
    autocommit: bool = False


@dataclass(frozen=True)
class WriteOptions:
    """Options for update / update_many / delete."""

    returning: bool = True
    autocommit: bool = False


@dataclass(frozen=True)
class TransactionOptions:
    """Per-call overrides for transaction(). ``None`` falls back to settings."""

    retry_on_error: bool | None = None
    retry_limit: int | None = None
    retry_delay_ms: int | None = None
    rollback_only: bool = False


__all__ = [
    "Statement",
    "QueryResult",
    "PkeyResult",
    "FindOptions",
    "InsertOptions",
    "WriteOptions",
    "TransactionOptions",
]
