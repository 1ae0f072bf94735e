"""Tests for ``tablespine.errors``."""

from __future__ import annotations

from tablespine.errors import (
    ArityError,
    ColumnOwnershipError,
    ConfigError,
    ContractError,
    ErrorCategory,
    LimitExceededError,
    LimitOrigin,
    PolicyError,
    ReadOnlyContextError,
    TableSpineError,
    TransactionConflictError,
    TransientError,
    WriteOutsideTransactionError,
    is_retryable,
    message_signals_conflict,
)


class TestHierarchy:
    def test_categories(self):
        assert ContractError("x").category is ErrorCategory.CONTRACT
        assert WriteOutsideTransactionError(operation="create").category is ErrorCategory.POLICY
        assert LimitExceededError(10, 11).category is ErrorCategory.LIMIT
        assert TransactionConflictError("x").category is ErrorCategory.TRANSIENT
        assert ConfigError("x").category is ErrorCategory.CONFIG

    def test_subclasses(self):
        assert issubclass(ColumnOwnershipError, ContractError)
        assert issubclass(ArityError, ContractError)
        assert issubclass(ReadOnlyContextError, PolicyError)
        assert issubclass(TransactionConflictError, TransientError)
        assert issubclass(PolicyError, TableSpineError)

    def test_retryable(self):
        assert is_retryable(TransactionConflictError("deadlock"))
        assert not is_retryable(ContractError("bad"))
        assert not is_retryable(ValueError("plain"))


class TestPolicyErrors:
    def test_carries_operation_and_model(self):
        error = WriteOutsideTransactionError(operation="update", model_name="users")
        assert error.operation == "update"
        assert error.model_name == "users"
        assert "update on users must run inside transaction()" in str(error)
        assert error.context.model == "users"

    def test_read_only_message(self):
        error = ReadOnlyContextError(operation="delete")
        assert "with_writer()" in str(error)
        assert error.to_dict()["operation"] == "delete"


class TestLimitExceeded:
    def test_fields_and_message(self):
        error = LimitExceededError(10, 11, origin="relation", model_name="users", relation_name="posts")
        assert error.origin is LimitOrigin.RELATION
        assert error.actual_count == 11
        assert str(error) == "relation on users.posts returned more than 10 rows (observed 11)"
        data = error.to_dict()
        assert data["limit"] == 10
        assert data["relation_name"] == "posts"


class TestContext:
    def test_with_context_fills_typed_fields_and_metadata(self):
        error = ContractError("bad", field="email", constraint="shape").with_context(
            model="users", operation="create", attempt=2
        )
        data = error.to_dict()
        assert data["context"] == {"model": "users", "operation": "create", "attempt": 2}
        assert data["field"] == "email"
        assert data["constraint"] == "shape"

    def test_cause_is_chained(self):
        root = OSError("socket closed")
        error = TableSpineError("wrapped", cause=root)
        assert error.__cause__ is root
        assert error.to_dict()["cause"] == "socket closed"


class TestConflictMessages:
    def test_known_markers(self):
        assert message_signals_conflict(Exception("ERROR: deadlock detected"))
        assert message_signals_conflict(Exception("Lock wait timeout exceeded; try restarting transaction"))
        assert not message_signals_conflict(Exception("syntax error"))
