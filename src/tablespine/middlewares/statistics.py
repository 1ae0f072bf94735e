"""
Statistics middleware - per-request operation counts and durations.

Examples:
    >>> use_middleware(StatisticsMiddleware)
    >>> async with request_scope():
    ...     await User.find([(User.active, True)])
    ...     StatisticsMiddleware.current().get_log()
    'Total:3(1.2ms), FindOne:0(0ms), FindAll:1(0.5ms), Count:0(0ms), Insert:0(0ms), ...'

Tags:
    middleware, statistics, timing, tablespine
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tablespine.middleware import Middleware, get_middleware_instance


@dataclass
class OperationStats:
    count: int = 0
    msec: float = 0.0


# bucket -> label in get_log()
BUCKETS: dict[str, str] = {
    "find_one": "FindOne",
    "find_all": "FindAll",
    "count": "Count",
    "insert": "Insert",
    "update": "Update",
    "delete": "Delete",
    "execute": "Execute",
    "query": "Query",
}


class StatisticsMiddleware(Middleware):
    """Counts every operation of the current request and sums its wall time in ms.

    ``find_by_id`` is counted with ``find_one``; ``create_many`` with
    ``insert``; ``update_many`` with ``update``.
    """

    def __init__(self):
        self.stats: dict[str, OperationStats] = {b: OperationStats() for b in BUCKETS}

    @classmethod
    def current(cls) -> StatisticsMiddleware:
        """The instance bound to the current request."""
        return get_middleware_instance(cls)

    def reset(self) -> None:
        for bucket in self.stats.values():
            bucket.count = 0
            bucket.msec = 0.0

    @property
    def total_count(self) -> int:
        return sum(s.count for s in self.stats.values())

    @property
    def total_msec(self) -> float:
        return sum(s.msec for s in self.stats.values())

    def get_stats(self) -> dict[str, dict[str, Any]]:
        result = {name: {"count": s.count, "msec": round(s.msec, 3)} for name, s in self.stats.items()}
        result["total"] = {"count": self.total_count, "msec": round(self.total_msec, 3)}
        return result

    def get_log(self) -> str:
        parts = [f"Total:{self.total_count}({_ms(self.total_msec)}ms)"]
        parts += [
            f"{label}:{self.stats[bucket].count}({_ms(self.stats[bucket].msec)}ms)"
            for bucket, label in BUCKETS.items()
        ]
        return ", ".join(parts)

    async def _measure(self, bucket: str, call: Callable[[], Awaitable[Any]]) -> Any:
        stats = self.stats[bucket]
        stats.count += 1
        start = time.perf_counter()
        try:
            return await call()
        finally:
            stats.msec += (time.perf_counter() - start) * 1000

    # -- Hooks ---------------------------------------------------------------

    async def find(self, model, conditions, options, call_next):
        return await self._measure("find_all", lambda: call_next(model, conditions, options))

    async def find_one(self, model, conditions, options, call_next):
        return await self._measure("find_one", lambda: call_next(model, conditions, options))

    async def find_by_id(self, model, keys, options, call_next):
        return await self._measure("find_one", lambda: call_next(model, keys, options))

    async def count(self, model, conditions, options, call_next):
        return await self._measure("count", lambda: call_next(model, conditions, options))

    async def create(self, model, values, options, call_next):
        return await self._measure("insert", lambda: call_next(model, values, options))

    async def create_many(self, model, rows, options, call_next):
        return await self._measure("insert", lambda: call_next(model, rows, options))

    async def update(self, model, conditions, values, options, call_next):
        return await self._measure("update", lambda: call_next(model, conditions, values, options))

    async def update_many(self, model, rows, key_columns, options, call_next):
        return await self._measure("update", lambda: call_next(model, rows, key_columns, options))

    async def delete(self, model, conditions, options, call_next):
        return await self._measure("delete", lambda: call_next(model, conditions, options))

    async def query(self, model, sql, params, call_next):
        return await self._measure("query", lambda: call_next(model, sql, params))

    async def execute(self, model, sql, params, call_next):
        return await self._measure("execute", lambda: call_next(model, sql, params))


def _ms(value: float) -> str:
    return f"{value:.1f}".rstrip("0").rstrip(".") if value else "0"


__all__ = [
    "OperationStats",
    "StatisticsMiddleware",
]
