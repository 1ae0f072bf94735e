"""
Structured error types for tablespine.

Every failure the data-access layer raises on its own account is a
:class:`TableSpineError`. The hierarchy mirrors the five ways a data
operation can go wrong, so callers can branch on type rather than on
message text:

- **Contract violations:** malformed condition/value shapes, a parent
  reference pointing at the wrong model, composite-key arity mismatches.
  Raised synchronously, before any SQL reaches a connection.
- **Policy violations:** a write outside an explicit transaction, or a
  write inside a writer read-only context. They carry the attempted
  operation and the model name.
- **Limit violations:** a find or relation batch that exceeds its
  configured hard limit.
- **Transient conflicts:** serialization failures and deadlocks, retried
  at the outermost transaction boundary.
- **Everything else:** driver exceptions (asyncpg, pymysql, sqlite3) are
  never wrapped; they reach the caller unchanged.

Manifesto:
    - **Typed over textual:** Branch on ``isinstance``, never on messages
    - **Fail before I/O:** Contract errors never leave a half-built statement
    - **Explicit retry semantics:** Each error knows if it is retryable
    - **Rich context:** Errors carry model/operation/sql for logging

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────────┐
        │                      TableSpineError                           │
        │   (category, retryable, context, cause)                        │
        ├───────────────────────────────────────────────────────────────┤
        │                                                                │
        │  ContractError        PolicyError          LimitExceededError  │
        │  (CONTRACT)           (POLICY)             (LIMIT)             │
        │     │                    │                                     │
        │  ColumnOwnershipError WriteOutsideTransactionError             │
        │  ArityError           ReadOnlyContextError                     │
        │                                                                │
        │  TransientError       ConfigError                              │
        │  (retryable=True)     (CONFIG)                                 │
        │     │                                                          │
        │  TransactionConflictError                                      │
        └───────────────────────────────────────────────────────────────┘

Examples:
    >>> err = LimitExceededError(10, 11, origin=LimitOrigin.FIND, model_name="User")
    >>> err.limit, err.actual_count, err.origin.value
    (10, 11, 'find')

    >>> err = WriteOutsideTransactionError(operation="create", model_name="User")
    >>> err.to_dict()["operation"]
    'create'

Guardrails:
    ❌ DON'T: Wrap driver exceptions in a TableSpineError
    ✅ DO: Let them propagate; the transaction manager rolls back first

    ❌ DON'T: Mark contract or policy errors retryable
    ✅ DO: Let the class ``default_retryable`` decide

Tags:
    error-handling, exception-hierarchy, retry-logic, tablespine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONTRACT = "CONTRACT"        # Malformed call shapes, caught before I/O
    POLICY = "POLICY"            # Transaction / read-only policy
    LIMIT = "LIMIT"              # Configured hard limits
    TRANSIENT = "TRANSIENT"      # Serialization failure, deadlock
    DATABASE = "DATABASE"        # Connection / pool problems
    CONFIG = "CONFIG"            # Missing or invalid configuration
    INTERNAL = "INTERNAL"        # Bugs, unexpected state


class LimitOrigin(str, Enum):
    """Where a limit violation was detected."""

    FIND = "find"
    RELATION = "relation"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are serialized by :meth:`to_dict`; anything that
    does not fit a typed field goes into ``metadata``.
    """

    model: str | None = None
    operation: str | None = None
    table: str | None = None
    dialect: str | None = None
    sql: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("model", "operation", "table", "dialect", "sql"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TableSpineError(Exception):
    """
    Base exception for all tablespine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    call sites only pass a message and whatever domain fields they own.

    Examples:
        >>> error = TableSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(model="User").context.model
        'User'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TableSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ContractError("bad value").with_context(model="User", operation="find")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONTRACT ERRORS (raised before any SQL is issued)
# =============================================================================


class ContractError(TableSpineError):
    """
    A call shape the builder or facade cannot accept.

    Never retryable; the calling code must change.
    """

    default_category = ErrorCategory.CONTRACT
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.constraint:
            result["constraint"] = self.constraint
        return result


class ColumnOwnershipError(ContractError):
    """A parent-column reference resolved to a model other than the calling one."""


class ArityError(ContractError):
    """Key rows do not match the arity of the key column list."""


# =============================================================================
# POLICY ERRORS
# =============================================================================


class PolicyError(TableSpineError):
    """
    Base for transaction-policy violations.

    Carries the attempted operation and model name so the caller can
    report exactly which write was refused.
    """

    default_category = ErrorCategory.POLICY
    default_retryable = False

    def __init__(
        self,
        message: str | None = None,
        *,
        operation: str | None = None,
        model_name: str | None = None,
        **kwargs: Any,
    ):
        self.operation = operation
        self.model_name = model_name
        super().__init__(message or self._default_message(), **kwargs)
        self.context.operation = operation
        self.context.model = model_name

    def _default_message(self) -> str:
        target = f" on {self.model_name}" if self.model_name else ""
        return f"{self.operation or 'write'}{target} refused"

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["operation"] = self.operation
        result["model_name"] = self.model_name
        return result


class WriteOutsideTransactionError(PolicyError):
    """A write was attempted with no active transaction."""

    def _default_message(self) -> str:
        target = f" on {self.model_name}" if self.model_name else ""
        return (
            f"{self.operation or 'write'}{target} must run inside transaction(); "
            "pass autocommit=True to opt out explicitly"
        )


class ReadOnlyContextError(PolicyError):
    """A write was attempted while bound to the writer for reads only."""

    def _default_message(self) -> str:
        target = f" on {self.model_name}" if self.model_name else ""
        return f"{self.operation or 'write'}{target} attempted inside with_writer() read-only context"


# =============================================================================
# LIMIT ERRORS
# =============================================================================


class LimitExceededError(TableSpineError):
    """
    A find or relation batch matched more rows than its hard limit allows.

    ``actual_count`` is the number of rows observed; queries are issued
    with ``LIMIT limit + 1`` so the observed count is at most one past the
    limit and never silently truncated.
    """

    default_category = ErrorCategory.LIMIT
    default_retryable = False

    def __init__(
        self,
        limit: int,
        actual_count: int,
        *,
        origin: LimitOrigin | str = LimitOrigin.FIND,
        model_name: str | None = None,
        relation_name: str | None = None,
        **kwargs: Any,
    ):
        self.limit = limit
        self.actual_count = actual_count
        self.origin = LimitOrigin(origin)
        self.model_name = model_name
        self.relation_name = relation_name
        where = model_name or "query"
        if relation_name:
            where = f"{where}.{relation_name}"
        message = (
            f"{self.origin.value} on {where} returned more than {limit} rows "
            f"(observed {actual_count})"
        )
        super().__init__(message, **kwargs)
        self.context.model = model_name

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            limit=self.limit,
            actual_count=self.actual_count,
            origin=self.origin.value,
        )
        if self.relation_name:
            result["relation_name"] = self.relation_name
        return result


# =============================================================================
# TRANSIENT ERRORS (retryable at the outermost transaction)
# =============================================================================


class TransientError(TableSpineError):
    """Temporary condition that may succeed on retry."""

    default_category = ErrorCategory.TRANSIENT
    default_retryable = True


class TransactionConflictError(TransientError):
    """
    Serialization failure or deadlock.

    Drivers report these with their own exception types; this class exists
    for code that detects a conflict itself (application-level optimistic
    locking, tests) and wants the retry policy to apply.
    """


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(TableSpineError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# HELPERS
# =============================================================================


# Messages that identify contention across drivers.
TRANSIENT_MESSAGES: tuple[str, ...] = (
    "could not serialize access",
    "deadlock detected",
    "deadlock found",
    "lock wait timeout exceeded",
    "try restarting transaction",
    "the transaction might succeed if retried",
)


def is_retryable(error: BaseException) -> bool:
    """Check if an error is marked retryable."""
    if isinstance(error, TableSpineError):
        return error.retryable
    return False


def message_signals_conflict(error: BaseException) -> bool:
    """True when the error text matches a known contention message."""
    text = str(error).lower()
    return any(marker in text for marker in TRANSIENT_MESSAGES)


__all__ = [
    "ErrorCategory",
    "LimitOrigin",
    "ErrorContext",
    "TableSpineError",
    "ContractError",
    "ColumnOwnershipError",
    "ArityError",
    "PolicyError",
    "WriteOutsideTransactionError",
    "ReadOnlyContextError",
    "LimitExceededError",
    "TransientError",
    "TransactionConflictError",
    "ConfigError",
    "TRANSIENT_MESSAGES",
    "is_retryable",
    "message_signals_conflict",
]
