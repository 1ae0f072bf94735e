"""Tests for the middleware chain and the statistics middleware."""

from __future__ import annotations

import asyncio

import pytest

from tablespine.context import request_scope
from tablespine.errors import ContractError
from tablespine.middleware import (
    HOOKS,
    Middleware,
    create_middleware,
    get_middleware_instance,
    get_middlewares,
    use_middleware,
)
from tablespine.middlewares.statistics import BUCKETS, StatisticsMiddleware
from tests._support.models import User


def tracing(label: str, calls: list[str]) -> type[Middleware]:
    class Tracing(Middleware):
        async def find(self, model, conditions, options, call_next):
            calls.append(f"{label}:before")
            result = await call_next(model, conditions, options)
            calls.append(f"{label}:after")
            return result

    return Tracing


class TestRegistry:
    def test_remover(self):
        Tracing = tracing("a", [])
        remove = use_middleware(Tracing)
        assert get_middlewares() == [Tracing]
        remove()
        assert get_middlewares() == []

    def test_registering_twice_keeps_one_entry(self):
        Tracing = tracing("a", [])
        use_middleware(Tracing)
        use_middleware(Tracing)
        assert get_middlewares() == [Tracing]

    def test_rejects_non_middleware(self):
        with pytest.raises(ContractError):
            use_middleware(object)

    def test_hook_names(self):
        assert set(HOOKS) == {n for n in vars(Middleware) if not n.startswith("_")}


class TestChain:
    async def test_first_registered_is_outermost(self, sqlite_fake):
        calls: list[str] = []
        use_middleware(tracing("outer", calls))
        use_middleware(tracing("inner", calls))
        await User.find()
        assert calls == ["outer:before", "inner:before", "inner:after", "outer:after"]

    async def test_short_circuit(self, sqlite_fake, recording_log):
        class Cached(Middleware):
            async def find_one(self, model, conditions, options, call_next):
                return "cached"

        use_middleware(Cached)
        assert await User.find_one([(User.id, 1)]) == "cached"
        assert recording_log == []

    async def test_rewrites_arguments(self, sqlite_fake, recording_log):
        class OnlyActive(Middleware):
            async def find(self, model, conditions, options, call_next):
                return await call_next(model, [*(conditions or []), (model.active, True)], options)

        use_middleware(OnlyActive)
        await User.find()
        assert recording_log == [("reader", "SELECT * FROM users WHERE active = 1 ORDER BY id ASC", ())]

    async def test_execute_sees_every_statement(self, sqlite_fake):
        async def record(self, model, sql, params, call_next):
            self.state["sql"].append((model.__name__, sql))
            return await call_next(model, sql, params)

        Audit = create_middleware({"execute": record}, state={"sql": []})
        use_middleware(Audit)
        async with request_scope():
            await User.find()
            await User.count()
            await sqlite_fake.transaction(lambda: User.delete([(User.id, 1)]))
            seen = get_middleware_instance(Audit).state["sql"]
        assert seen == [
            ("User", "SELECT * FROM users ORDER BY id ASC"),
            ("User", "SELECT COUNT(*) AS count FROM users"),
            ("User", "DELETE FROM users WHERE id = ? RETURNING id"),
        ]

    async def test_call_next_may_run_twice(self, sqlite_fake, recording_log):
        class Twice(Middleware):
            async def count(self, model, conditions, options, call_next):
                first = await call_next(model, conditions, options)
                second = await call_next(model, conditions, options)
                return first + second

        use_middleware(Twice)
        assert await User.count() == 0
        assert len(recording_log) == 2


class TestPerRequestState:
    async def test_state_is_copied_per_request(self, sqlite_fake):
        async def count_queries(self, model, sql, params, call_next):
            self.state["n"] += 1
            return await call_next(model, sql, params)

        Counter = create_middleware({"execute": count_queries}, state={"n": 0}, name="Counter")
        use_middleware(Counter)

        async with request_scope():
            await User.find()
            await User.count()
            assert get_middleware_instance(Counter).state == {"n": 2}

        async with request_scope():
            await User.find()
            assert get_middleware_instance(Counter).state == {"n": 1}

    async def test_concurrent_requests_get_their_own_instances(self, sqlite_fake):
        async def count_queries(self, model, sql, params, call_next):
            self.state["n"] += 1
            return await call_next(model, sql, params)

        Counter = create_middleware({"execute": count_queries}, state={"n": 0}, name="Counter")
        use_middleware(Counter)
        first_ready = asyncio.Event()
        second_done = asyncio.Event()

        async def first():
            async with request_scope():
                await User.find()
                await User.find()
                first_ready.set()
                await second_done.wait()
                return get_middleware_instance(Counter)

        async def second():
            await first_ready.wait()
            async with request_scope():
                await User.find()
                instance = get_middleware_instance(Counter)
            second_done.set()
            return instance

        a, b = await asyncio.gather(first(), second())
        assert a is not b
        assert a.state == {"n": 2}
        assert b.state == {"n": 1}

    def test_created_class(self):
        Counter = create_middleware({"execute": lambda *a: None}, name="Counter")
        assert Counter.__name__ == "Counter"
        assert issubclass(Counter, Middleware)
        assert Counter().state == {}

    def test_unknown_hook(self):
        with pytest.raises(ContractError) as info:
            create_middleware({"select": lambda *a: None})
        assert info.value.field == "hooks"


class TestStatisticsMiddleware:
    async def test_counts_per_bucket(self, sqlite_fake):
        use_middleware(StatisticsMiddleware)
        async with request_scope():
            await User.find()
            await User.find_one([(User.id, 1)])
            await User.find_by_id([1, 2])
            await User.count()
            await sqlite_fake.transaction(lambda: User.create([(User.name, "a")]))
            stats = StatisticsMiddleware.current().get_stats()

        assert stats["find_all"]["count"] == 1
        assert stats["find_one"]["count"] == 2
        assert stats["count"]["count"] == 1
        assert stats["insert"]["count"] == 1
        assert stats["query"]["count"] == 3
        assert stats["execute"]["count"] == 5
        assert stats["total"]["count"] == 13

    async def test_log_line(self, sqlite_fake):
        use_middleware(StatisticsMiddleware)
        async with request_scope():
            await User.find()
            log = StatisticsMiddleware.current().get_log()
        parts = log.split(", ")
        assert parts[0].startswith("Total:3(")
        assert [p.split(":")[0] for p in parts[1:]] == list(BUCKETS.values())
        assert "FindOne:0(0ms)" in parts

    async def test_reset(self, sqlite_fake):
        use_middleware(StatisticsMiddleware)
        async with request_scope():
            await User.count()
            stats = StatisticsMiddleware.current()
            stats.reset()
            assert stats.total_count == 0
            assert stats.total_msec == 0
