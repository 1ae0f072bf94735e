"""
TableSpine - multi-dialect async data access.

Models declare their columns once; reads and writes compose conditions
out of those columns, go through a pluggable middleware chain, and run on
PostgreSQL (asyncpg), MySQL (aiomysql) or SQLite (aiosqlite) with
reader/writer routing, savepoint-nested transactions and N+1-safe
relation loading.

Layers:
    ========================  ==========================================
    tablespine.model          Model base, column() declarations
    tablespine.operations     find / create / update / delete / ...
    tablespine.middleware     Hook chain around every operation
    tablespine.relations      has_many / has_one / belongs_to, batching
    tablespine.builder        Conditions + options -> SQL and params
    tablespine.dialect        Per-database SQL differences
    tablespine.database       Pools, routing, transactions, retry
    tablespine.drivers        asyncpg / aiomysql / aiosqlite adapters
    ========================  ==========================================
"""

__version__ = "0.1.0"

from tablespine.column import Column, NullsOrder, OrderColumn, SortDirection
from tablespine.conditions import (
    exists,
    in_subquery,
    not_exists,
    not_in_subquery,
    or_,
    parent_ref,
    raw_condition,
    tuple_in,
)
from tablespine.context import current_request, request_scope
from tablespine.database import Database
from tablespine.errors import (
    ArityError,
    ColumnOwnershipError,
    ConfigError,
    ContractError,
    LimitExceededError,
    PolicyError,
    ReadOnlyContextError,
    TableSpineError,
    TransactionConflictError,
    TransientError,
    WriteOutsideTransactionError,
)
from tablespine.logging import configure_logging, get_logger
from tablespine.middleware import (
    Middleware,
    clear_middlewares,
    create_middleware,
    get_middlewares,
    remove_middleware,
    use_middleware,
)
from tablespine.model import Model, column
from tablespine.relations import belongs_to, has_many, has_one
from tablespine.sentinels import NOT_NULL, NOW, NULL, SKIP, dynamic, raw
from tablespine.settings import ConnectionConfig, DialectName, TableSpineSettings
from tablespine.types import (
    FindOptions,
    InsertOptions,
    PkeyResult,
    QueryResult,
    TransactionOptions,
    WriteOptions,
)

__all__ = [
    "__version__",
    # Models
    "Model",
    "column",
    "Column",
    "OrderColumn",
    "SortDirection",
    "NullsOrder",
    "has_many",
    "has_one",
    "belongs_to",
    # Conditions and values
    "or_",
    "tuple_in",
    "raw_condition",
    "parent_ref",
    "in_subquery",
    "not_in_subquery",
    "exists",
    "not_exists",
    "SKIP",
    "NULL",
    "NOT_NULL",
    "NOW",
    "raw",
    "dynamic",
    # Options and results
    "FindOptions",
    "InsertOptions",
    "WriteOptions",
    "TransactionOptions",
    "PkeyResult",
    "QueryResult",
    # Runtime
    "Database",
    "ConnectionConfig",
    "DialectName",
    "TableSpineSettings",
    "current_request",
    "request_scope",
    "configure_logging",
    "get_logger",
    # Middleware
    "Middleware",
    "use_middleware",
    "remove_middleware",
    "clear_middlewares",
    "get_middlewares",
    "create_middleware",
    # Errors
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
]
