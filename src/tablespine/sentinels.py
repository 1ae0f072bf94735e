"""Sentinel values recognized by the SQL builder.

A sentinel is a tagged marker that the builder treats specially instead of
binding it as a parameter:

==============  ==============================  ===========================
Sentinel        In a condition                  In a value list
==============  ==============================  ===========================
``SKIP``        condition dropped               column dropped
``NULL``        ``col IS NULL``                 binds NULL
``NOT_NULL``    ``col IS NOT NULL``             contract violation
``NOW``         ``col = <server time>``         ``<server time>``
``Raw(sql)``    ``col = sql`` (inline)          ``sql`` (inline)
``Dynamic``     ``col = fragment`` + params     ``fragment`` + params
==============  ==============================  ===========================

``Raw`` and ``Dynamic`` are the only ways caller text reaches SQL
verbatim; both are an explicit opt-in trust boundary.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any


class Sentinel:
    """Singleton marker with a readable repr."""

    __slots__ = ("_name",)

    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __reduce__(self) -> str:
        return self._name


SKIP = Sentinel("SKIP")
NULL = Sentinel("NULL")
NOT_NULL = Sentinel("NOT_NULL")
NOW = Sentinel("NOW")


@dataclass(frozen=True)
class Raw:
    """Literal SQL text, inlined with no parameter binding."""

    sql: str


@dataclass(frozen=True)
class Dynamic:
    """SQL fragment with its own ``?`` placeholders and bound values.

    >>> Dynamic("COALESCE(?, name)", ["anon"])
    Dynamic(sql='COALESCE(?, name)', params=('anon',))
    """

    sql: str
    params: Sequence[Any] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", tuple(self.params))


def raw(sql: str) -> Raw:
    return Raw(sql)


def dynamic(sql: str, params: Sequence[Any] = ()) -> Dynamic:
    return Dynamic(sql, tuple(params))


__all__ = [
    "Sentinel",
    "SKIP",
    "NULL",
    "NOT_NULL",
    "NOW",
    "Raw",
    "Dynamic",
    "raw",
    "dynamic",
]
