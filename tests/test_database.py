"""Tests for ``tablespine.database`` - routing, write policy, transactions, retry."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from tablespine.context import request_scope
from tablespine.database import Database, is_write_statement
from tablespine.errors import ReadOnlyContextError, TransactionConflictError, WriteOutsideTransactionError
from tablespine.settings import ConnectionConfig, TableSpineSettings
from tablespine.types import QueryResult, TransactionOptions
from tests._support.databases import make_settings
from tests._support.fakes import RecordingConnection, RecordingDriver
from tests._support.models import AppModel, User


def statements(log) -> list[str]:
    return [sql for _, sql, _ in log]


def labels(log) -> list[str]:
    return [label for label, _, _ in log]


INSERT = "INSERT INTO users (name) VALUES (?) RETURNING id"


def fake_db(log, dialect: str = "sqlite", **settings) -> Database:
    reader = RecordingDriver(dialect, label="reader", log=log)
    writer = RecordingDriver(dialect, label="writer", log=log)
    db = Database(make_settings(dialect, **settings), reader=reader, writer=writer)
    AppModel.bind(db)
    return db


class TestWriteClassification:
    @pytest.mark.parametrize(
        "sql",
        [
            "INSERT INTO t VALUES (1)",
            "  update t set a = 1",
            "-- note\nDELETE FROM t",
            "/* hint */ REPLACE INTO t VALUES (1)",
            "WITH v AS (VALUES (1)) UPDATE t SET a = 1 FROM v",
            "CREATE TABLE t (id INT)",
        ],
    )
    def test_writes(self, sql):
        assert is_write_statement(sql)

    @pytest.mark.parametrize("sql", ["SELECT 1", "(SELECT 1)", "WITH x AS (SELECT 1) SELECT * FROM x", ""])
    def test_reads(self, sql):
        assert not is_write_statement(sql)


class TestWritePolicy:
    async def test_write_outside_transaction_is_refused(self, sqlite_fake, recording_log):
        with pytest.raises(WriteOutsideTransactionError) as info:
            await User.create([(User.name, "a")])
        assert info.value.operation == "create"
        assert info.value.model_name == "User"
        assert recording_log == []

    async def test_autocommit_opt_out(self, sqlite_fake, recording_log):
        await User.create([(User.name, "a")], autocommit=True)
        assert recording_log == [("writer", INSERT, ("a",))]

    async def test_policy_can_be_disabled(self, recording_log):
        fake_db(recording_log, require_transaction_for_writes=False)
        await User.delete([(User.id, 1)])
        assert labels(recording_log) == ["writer"]

    async def test_raw_sql_is_classified(self, sqlite_fake, recording_log):
        with pytest.raises(WriteOutsideTransactionError):
            await sqlite_fake.execute("UPDATE users SET name = ?", ["x"])
        await sqlite_fake.execute("SELECT 1")
        assert recording_log == [("reader", "SELECT 1", ())]


class TestRouting:
    async def test_reads_use_reader(self, sqlite_fake, recording_log):
        await User.find()
        assert labels(recording_log) == ["reader"]

    async def test_placeholders_are_converted_per_dialect(self, mysql_fake, recording_log):
        await User.find([(User.id, 1)])
        assert recording_log == [("reader", "SELECT * FROM users WHERE id = %s ORDER BY id ASC", (1,))]

    async def test_postgres_placeholders(self, recording_log):
        fake_db(recording_log, "postgresql")
        await User.find([(User.id, [1, 2])])
        assert statements(recording_log) == ["SELECT * FROM users WHERE id IN ($1, $2) ORDER BY id ASC"]

    async def test_reads_stick_to_writer_after_commit(self, sqlite_fake, recording_log):
        async with request_scope():
            await sqlite_fake.transaction(lambda: User.create([(User.name, "a")]))
            recording_log.clear()
            await User.find()
            assert labels(recording_log) == ["writer"]

        recording_log.clear()
        async with request_scope():
            await User.find()
            assert labels(recording_log) == ["reader"]

    async def test_sticky_window_disabled(self, recording_log):
        db = fake_db(recording_log, use_writer_after_transaction=False)
        async with request_scope():
            await db.transaction(lambda: User.create([(User.name, "a")]))
            recording_log.clear()
            await User.find()
        assert labels(recording_log) == ["reader"]

    async def test_concurrent_request_does_not_see_open_transaction(self, sqlite_fake, recording_log):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holds_transaction():
            async def work():
                entered.set()
                await release.wait()
                return sqlite_fake.transaction_depth

            async with request_scope():
                return await sqlite_fake.transaction(work)

        async def reads_meanwhile():
            await entered.wait()
            async with request_scope():
                depth = sqlite_fake.transaction_depth
                await User.find()
            release.set()
            return depth

        assert await asyncio.gather(holds_transaction(), reads_meanwhile()) == [1, 0]
        assert [(label, sql) for label, sql, _ in recording_log] == [
            ("writer", "BEGIN"),
            ("reader", "SELECT * FROM users ORDER BY id ASC"),
            ("writer", "COMMIT"),
        ]

    async def test_zero_duration_never_sticks(self, recording_log):
        db = fake_db(recording_log, writer_sticky_duration_ms=0)
        async with request_scope():
            await db.transaction(lambda: User.create([(User.name, "a")]))
            recording_log.clear()
            await User.find()
        assert labels(recording_log) == ["reader"]


class TestTransactions:
    async def test_outermost_commits_on_writer(self, sqlite_fake, recording_log):
        async def work():
            assert sqlite_fake.is_in_transaction
            assert sqlite_fake.transaction_depth == 1
            await User.find()
            await User.create([(User.name, "a")])
            return "ok"

        assert await sqlite_fake.transaction(work) == "ok"
        assert statements(recording_log) == ["BEGIN", "SELECT * FROM users ORDER BY id ASC", INSERT, "COMMIT"]
        assert set(labels(recording_log)) == {"writer"}
        assert sqlite_fake.transaction_depth == 0

    async def test_error_rolls_back_and_propagates(self, sqlite_fake, recording_log):
        async def work():
            await User.create([(User.name, "a")])
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await sqlite_fake.transaction(work)
        assert statements(recording_log) == ["BEGIN", INSERT, "ROLLBACK"]

    async def test_nested_savepoint_released(self, sqlite_fake, recording_log):
        async def inner():
            assert sqlite_fake.transaction_depth == 2
            await User.create([(User.name, "b")])

        async def outer():
            await User.create([(User.name, "a")])
            await sqlite_fake.transaction(inner)

        await sqlite_fake.transaction(outer)
        assert statements(recording_log) == [
            "BEGIN",
            INSERT,
            "SAVEPOINT sp_2",
            INSERT,
            "RELEASE SAVEPOINT sp_2",
            "COMMIT",
        ]

    async def test_inner_failure_rolls_back_savepoint_only(self, sqlite_fake, recording_log):
        async def inner():
            await User.create([(User.name, "b")])
            raise ValueError("inner")

        async def outer():
            await User.create([(User.name, "a")])
            with pytest.raises(ValueError):
                await sqlite_fake.transaction(inner)
            assert sqlite_fake.transaction_depth == 1
            return "done"

        assert await sqlite_fake.transaction(outer) == "done"
        assert statements(recording_log) == [
            "BEGIN",
            INSERT,
            "SAVEPOINT sp_2",
            INSERT,
            "ROLLBACK TO SAVEPOINT sp_2",
            "RELEASE SAVEPOINT sp_2",
            "COMMIT",
        ]

    async def test_third_level_savepoint_name(self, sqlite_fake, recording_log):
        async def level3():
            assert sqlite_fake.transaction_depth == 3

        async def level2():
            await sqlite_fake.transaction(level3)

        await sqlite_fake.transaction(lambda: sqlite_fake.transaction(level2))
        assert "SAVEPOINT sp_3" in statements(recording_log)

    async def test_rollback_only_returns_result(self, sqlite_fake, recording_log):
        async def work():
            await User.create([(User.name, "a")])
            return 42

        result = await sqlite_fake.transaction(work, TransactionOptions(rollback_only=True))
        assert result == 42
        assert statements(recording_log) == ["BEGIN", INSERT, "ROLLBACK"]

    async def test_rollback_only_reraises(self, sqlite_fake, recording_log):
        async def work():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await sqlite_fake.transaction(work, TransactionOptions(rollback_only=True))
        assert statements(recording_log) == ["BEGIN", "ROLLBACK"]

    async def test_rollback_only_savepoint(self, sqlite_fake, recording_log):
        async def outer():
            return await sqlite_fake.transaction(
                lambda: User.create([(User.name, "b")]), TransactionOptions(rollback_only=True)
            )

        await sqlite_fake.transaction(outer)
        assert statements(recording_log) == [
            "BEGIN",
            "SAVEPOINT sp_2",
            INSERT,
            "ROLLBACK TO SAVEPOINT sp_2",
            "RELEASE SAVEPOINT sp_2",
            "COMMIT",
        ]

    async def test_failed_commit_rolls_back(self, sqlite_fake, recording_log):
        with patch.object(RecordingConnection, "commit", AsyncMock(side_effect=RuntimeError("disk I/O error"))):
            with pytest.raises(RuntimeError, match="disk I/O error"):
                await sqlite_fake.transaction(lambda: User.create([(User.name, "a")]))
        assert statements(recording_log) == ["BEGIN", INSERT, "ROLLBACK"]

    async def test_failed_release_rolls_back_savepoint(self, sqlite_fake, recording_log):
        sqlite_fake.writer.queue(QueryResult(), QueryResult(), RuntimeError("release failed"))

        async def outer():
            await sqlite_fake.transaction(lambda: User.create([(User.name, "b")]))

        with pytest.raises(RuntimeError, match="release failed"):
            await sqlite_fake.transaction(outer)
        assert statements(recording_log) == [
            "BEGIN",
            "SAVEPOINT sp_2",
            INSERT,
            "RELEASE SAVEPOINT sp_2",
            "ROLLBACK TO SAVEPOINT sp_2",
            "RELEASE SAVEPOINT sp_2",
            "ROLLBACK",
        ]

    async def test_failed_rollback_keeps_original_error(self, sqlite_fake, recording_log):
        async def work():
            raise ValueError("original")

        with patch.object(RecordingConnection, "rollback", AsyncMock(side_effect=RuntimeError("link down"))):
            with pytest.raises(ValueError, match="original"):
                await sqlite_fake.transaction(work)


class TestRetry:
    @pytest.mark.parametrize(
        ("failures", "retry_limit", "succeeds"),
        [(1, 3, True), (3, 3, True), (3, 2, False), (1, 0, False)],
    )
    async def test_conflicts_are_retried(self, sqlite_fake, recording_log, failures, retry_limit, succeeds):
        attempts = 0

        async def work():
            nonlocal attempts
            attempts += 1
            if attempts <= failures:
                raise TransactionConflictError("could not serialize access")
            return attempts

        options = TransactionOptions(retry_limit=retry_limit, retry_delay_ms=0)
        if succeeds:
            assert await sqlite_fake.transaction(work, options) == failures + 1
        else:
            with pytest.raises(TransactionConflictError):
                await sqlite_fake.transaction(work, options)
            assert attempts == retry_limit + 1

        log = statements(recording_log)
        assert log.count("BEGIN") == attempts
        assert log.count("ROLLBACK") == min(failures, attempts)
        assert log.count("COMMIT") == (1 if succeeds else 0)

    async def test_retry_disabled(self, sqlite_fake):
        attempts = 0

        async def work():
            nonlocal attempts
            attempts += 1
            raise TransactionConflictError("deadlock detected")

        with pytest.raises(TransactionConflictError):
            await sqlite_fake.transaction(work, TransactionOptions(retry_on_error=False))
        assert attempts == 1

    async def test_other_errors_are_not_retried(self, sqlite_fake):
        attempts = 0

        async def work():
            nonlocal attempts
            attempts += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await sqlite_fake.transaction(work)
        assert attempts == 1

    async def test_nested_conflict_retries_whole_transaction(self, sqlite_fake, recording_log):
        attempts = 0

        async def inner():
            if attempts == 1:
                raise TransactionConflictError("deadlock detected")

        async def outer():
            nonlocal attempts
            attempts += 1
            await sqlite_fake.transaction(inner)
            return attempts

        assert await sqlite_fake.transaction(outer) == 2
        log = statements(recording_log)
        assert log.count("BEGIN") == 2
        assert log.count("ROLLBACK TO SAVEPOINT sp_2") == 1

    async def test_driver_conflict_from_statement(self, recording_log):
        db = fake_db(recording_log)
        db.writer.queue(RuntimeError("database is locked"))

        async def work():
            return await User.create([(User.name, "a")])

        await db.transaction(work, TransactionOptions(retry_delay_ms=0))
        assert statements(recording_log) == ["BEGIN", INSERT, "ROLLBACK", "BEGIN", INSERT, "COMMIT"]

    async def test_locked_commit_is_retried(self, sqlite_fake, recording_log):
        commits = 0

        async def commit(conn):
            nonlocal commits
            commits += 1
            conn.driver.log.append((conn.driver.label, "COMMIT", ()))
            if commits == 1:
                raise RuntimeError("database is locked")

        with patch.object(RecordingConnection, "commit", commit):
            await sqlite_fake.transaction(lambda: User.create([(User.name, "a")]))
        assert statements(recording_log) == ["BEGIN", INSERT, "COMMIT", "ROLLBACK", "BEGIN", INSERT, "COMMIT"]

    async def test_delay_doubles(self, sqlite_fake):
        attempts = 0

        async def work():
            nonlocal attempts
            attempts += 1
            if attempts <= 2:
                raise TransactionConflictError("conflict")

        with patch("tablespine.database.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await sqlite_fake.transaction(work, TransactionOptions(retry_delay_ms=100))
        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2]


class TestWithWriter:
    async def test_reads_go_to_writer(self, sqlite_fake, recording_log):
        async def work():
            assert sqlite_fake.in_writer_context
            return await User.find()

        await sqlite_fake.with_writer(work)
        assert labels(recording_log) == ["writer"]
        assert not sqlite_fake.in_writer_context

    async def test_writes_are_refused(self, sqlite_fake, recording_log):
        with pytest.raises(ReadOnlyContextError) as info:
            await sqlite_fake.with_writer(lambda: User.update([(User.id, 1)], [(User.name, "x")]))
        assert info.value.operation == "update"
        assert recording_log == []

    async def test_autocommit_does_not_bypass_read_only(self, sqlite_fake):
        with pytest.raises(ReadOnlyContextError):
            await sqlite_fake.with_writer(lambda: User.create([(User.name, "x")], autocommit=True))

    async def test_transaction_inside_is_refused(self, sqlite_fake):
        with pytest.raises(ReadOnlyContextError):
            await sqlite_fake.with_writer(lambda: sqlite_fake.transaction(lambda: User.find()))

    async def test_inside_transaction_reuses_connection(self, sqlite_fake, recording_log):
        async def read_only():
            await User.find()
            with pytest.raises(ReadOnlyContextError):
                await User.delete([(User.id, 1)])

        async def work():
            await sqlite_fake.with_writer(read_only)
            await User.create([(User.name, "a")])

        await sqlite_fake.transaction(work)
        assert statements(recording_log) == ["BEGIN", "SELECT * FROM users ORDER BY id ASC", INSERT, "COMMIT"]


class TestLifecycle:
    async def test_connect_and_close(self, recording_log):
        db = fake_db(recording_log)
        async with db:
            assert db.reader.is_connected
            assert db.writer.is_connected
        assert not db.reader.is_connected

    def test_writer_defaults_to_reader(self):
        reader = RecordingDriver("sqlite")
        db = Database(make_settings(), reader=reader)
        assert db.writer is reader

    def test_from_settings_builds_drivers(self):
        db = Database.from_settings(make_settings(), name="main")
        assert db.name == "main"
        assert db.dialect.name == "sqlite"
        assert db.writer is db.reader

    async def test_file_database_round_trip(self, tmp_db_path):
        settings = TableSpineSettings(connection=ConnectionConfig(dialect="sqlite", database=str(tmp_db_path)))
        async with Database(settings) as db:
            await db.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)", autocommit=True)
            await db.transaction(lambda: db.execute("INSERT INTO notes (body) VALUES (?)", ["hi"]))
            result = await db.execute("SELECT body FROM notes")
        assert result.rows == [{"body": "hi"}]
