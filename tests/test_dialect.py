"""Tests for ``tablespine.dialect`` - placeholders, quoting, clauses, conflict detection."""

from __future__ import annotations

import pytest

from tablespine.column import NullsOrder, OrderColumn, SortDirection
from tablespine.dialect import (
    MySQLDialect,
    PostgreSQLDialect,
    SQLiteDialect,
    count_placeholders,
    get_dialect,
    register_dialect,
)
from tablespine.errors import ConfigError, ContractError, TransactionConflictError
from tablespine.settings import DialectName


class TestRegistry:
    def test_lookup_by_name_and_enum(self):
        assert isinstance(get_dialect("postgresql"), PostgreSQLDialect)
        assert isinstance(get_dialect("postgres"), PostgreSQLDialect)
        assert isinstance(get_dialect("MySQL"), MySQLDialect)
        assert isinstance(get_dialect(DialectName.SQLITE), SQLiteDialect)

    def test_unknown_dialect(self):
        with pytest.raises(ConfigError, match="Unknown dialect"):
            get_dialect("oracle")

    def test_register_custom(self):
        class Custom(SQLiteDialect):
            dialect_name = "custom"

        register_dialect("custom", Custom())
        assert get_dialect("custom").name == "custom"


class TestPlaceholders:
    def test_postgres_numbers_markers_outside_quotes(self):
        sql = "SELECT * FROM t WHERE a = ? AND b = '?' AND c = ?"
        assert get_dialect("postgresql").convert_placeholders(sql) == (
            "SELECT * FROM t WHERE a = $1 AND b = '?' AND c = $2"
        )

    def test_mysql_escapes_percent(self):
        sql = "SELECT * FROM t WHERE name LIKE '50%' AND id = ?"
        assert get_dialect("mysql").convert_placeholders(sql) == (
            "SELECT * FROM t WHERE name LIKE '50%%' AND id = %s"
        )

    def test_sqlite_is_unchanged(self):
        sql = "SELECT ? , '?'"
        assert get_dialect("sqlite").convert_placeholders(sql) == sql

    def test_escaped_quote_inside_literal(self):
        sql = "SELECT 'it''s ?' , ?"
        assert get_dialect("postgresql").convert_placeholders(sql) == "SELECT 'it''s ?' , $1"

    def test_count_ignores_quoted_markers(self):
        assert count_placeholders("a = ? AND b = '?' AND `c?` = ? AND \"d?\" = 1") == 2


class TestIdentifiers:
    def test_reserved_words_are_quoted(self):
        assert get_dialect("postgresql").identifier("user") == '"user"'
        assert get_dialect("mysql").identifier("order") == "`order`"
        assert get_dialect("sqlite").identifier("users.group") == 'users."group"'

    def test_plain_names_and_expressions_pass_through(self):
        d = get_dialect("postgresql")
        assert d.identifier("email") == "email"
        assert d.identifier("COUNT(*)") == "COUNT(*)"


class TestClauses:
    def test_order_term_nulls(self):
        term = OrderColumn("name", SortDirection.DESC, NullsOrder.LAST)
        assert get_dialect("postgresql").order_term(term) == "name DESC NULLS LAST"
        assert get_dialect("mysql").order_term(term) == "name IS NULL ASC, name DESC"
        assert get_dialect("sqlite").order_term(term) == "name DESC NULLS LAST"

        first = OrderColumn("name", SortDirection.ASC, NullsOrder.FIRST)
        assert not get_dialect("mysql").supports_nulls_order
        assert get_dialect("mysql").order_term(first) == "name IS NULL DESC, name ASC"

    def test_postgres_array_types(self):
        d = get_dialect("postgresql")
        assert d.array_type(None, [None, 3]) == "bigint"
        assert d.array_type(None, [True]) == "boolean"
        assert d.array_type("integer", [None, None]) == "integer"
        with pytest.raises(ContractError):
            d.array_type(None, [None, None], "score")

    def test_offset_without_limit(self):
        assert get_dialect("sqlite").limit_offset(None, 5) == "LIMIT -1 OFFSET 5"
        assert get_dialect("mysql").limit_offset(None, 5) == "LIMIT 18446744073709551615 OFFSET 5"
        assert get_dialect("postgresql").limit_offset(None, 5) == "OFFSET 5"

    @pytest.mark.parametrize("limit", [-1, 1.5, True])
    def test_limit_must_be_non_negative_int(self, limit):
        with pytest.raises(ContractError):
            get_dialect("postgresql").limit_offset(limit, None)

    def test_booleans_and_now(self):
        assert get_dialect("sqlite").boolean(True) == "1"
        assert get_dialect("postgresql").boolean(False) == "FALSE"
        assert get_dialect("postgresql").now() == "NOW()"
        assert get_dialect("sqlite").now() == "CURRENT_TIMESTAMP"

    def test_adapt_param(self):
        assert get_dialect("sqlite").adapt_param({"a": 1}) == '{"a": 1}'
        assert get_dialect("mysql").adapt_param([1, 2]) == "[1, 2]"
        assert get_dialect("postgresql").adapt_param([1, 2]) == [1, 2]
        assert get_dialect("postgresql").adapt_param({"a": 1}) == '{"a": 1}'

    def test_upsert_update_needs_conflict_target(self):
        with pytest.raises(ContractError):
            get_dialect("postgresql").upsert_clause([], ["name"], False)

    def test_savepoints(self):
        d = get_dialect("postgresql")
        assert d.savepoint("sp_2") == "SAVEPOINT sp_2"
        assert d.rollback_to_savepoint("sp_2") == "ROLLBACK TO SAVEPOINT sp_2"
        assert d.release_savepoint("sp_2") == "RELEASE SAVEPOINT sp_2"


class _PgError(Exception):
    def __init__(self, sqlstate: str):
        super().__init__("error")
        self.sqlstate = sqlstate


class TestTransientConflicts:
    def test_postgres_sqlstate(self):
        d = get_dialect("postgresql")
        assert d.is_transient_conflict(_PgError("40001"))
        assert d.is_transient_conflict(_PgError("40P01"))
        assert not d.is_transient_conflict(_PgError("23505"))

    def test_mysql_errno(self):
        d = get_dialect("mysql")
        assert d.is_transient_conflict(Exception(1213, "Deadlock found when trying to get lock"))
        assert d.is_transient_conflict(Exception(1205, "Lock wait timeout exceeded"))
        assert not d.is_transient_conflict(Exception(1062, "Duplicate entry"))

    def test_sqlite_locked(self):
        assert get_dialect("sqlite").is_transient_conflict(Exception("database is locked"))

    def test_messages_and_explicit_conflicts(self):
        d = get_dialect("sqlite")
        assert d.is_transient_conflict(TransactionConflictError("optimistic lock lost"))
        assert d.is_transient_conflict(RuntimeError("could not serialize access due to concurrent update"))
        assert not d.is_transient_conflict(ValueError("boom"))
