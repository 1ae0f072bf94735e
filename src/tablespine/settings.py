"""Connection descriptors and runtime settings.

``ConnectionConfig`` describes one pool (reader or writer).
``TableSpineSettings`` gathers everything a :class:`~tablespine.database.Database`
needs and reads it from the environment, so a deployment can switch
dialects or point reads at a replica without code changes.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not at first query
    - **Environment-driven:** ``TABLESPINE_`` prefix, nested with ``__``
    - **Sensible defaults:** Writer-sticky on, 5s window, 3 retries

Examples:
    Environment::

        TABLESPINE_CONNECTION__DIALECT=postgresql
        TABLESPINE_CONNECTION__HOST=replica.internal
        TABLESPINE_CONNECTION__DATABASE=app
        TABLESPINE_WRITER__DIALECT=postgresql
        TABLESPINE_WRITER__HOST=primary.internal
        TABLESPINE_WRITER__DATABASE=app
        TABLESPINE_FIND_HARD_LIMIT=1000

    >>> from tablespine.settings import TableSpineSettings
    >>> settings = TableSpineSettings()
    >>> settings.writer_sticky_duration_ms
    5000

Tags:
    settings, configuration, pydantic, environment, tablespine
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DialectName(str, Enum):
    """Supported SQL dialects."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class ConnectionConfig(BaseModel):
    """
    Descriptor for one connection pool.

    For SQLite ``database`` is the file path (or ``:memory:``) and the
    network fields are ignored.
    """

    dialect: DialectName = DialectName.SQLITE

    # PostgreSQL / MySQL
    host: str | None = None
    port: int | None = None
    database: str = ":memory:"
    user: str | None = None
    password: str | None = None

    # Pool
    max_pool_size: int = 10
    min_pool_size: int = 1

    # Timeouts (seconds)
    connect_timeout: float = 30.0
    query_timeout: float | None = None

    # Driver-specific extras, passed through untouched
    options: dict[str, Any] = Field(default_factory=dict)

    def default_port(self) -> int | None:
        match self.dialect:
            case DialectName.POSTGRESQL:
                return 5432
            case DialectName.MYSQL:
                return 3306
            case _:
                return None

    def to_dsn(self) -> str:
        """Connection string for the dialect (without password for logging use)."""
        match self.dialect:
            case DialectName.SQLITE:
                return self.database
            case DialectName.POSTGRESQL | DialectName.MYSQL:
                port = self.port or self.default_port()
                user = f"{self.user}@" if self.user else ""
                return f"{self.dialect.value}://{user}{self.host or 'localhost'}:{port}/{self.database}"


class TableSpineSettings(BaseSettings):
    """Runtime settings for a logical database.

    Fields
    ──────
    connection                    : reader pool descriptor (also the writer when ``writer`` is unset)
    writer                        : optional writer pool descriptor
    use_writer_after_transaction  : route reads to the writer for a window after commit
    writer_sticky_duration_ms     : length of that window
    find_hard_limit               : default max rows for find() (None = unlimited)
    has_many_hard_limit           : default max rows per relation batch (None = unlimited)
    retry_on_error                : retry outermost transactions on transient conflicts
    retry_limit                   : retries after the first attempt
    retry_delay_ms                : base pause between attempts (doubles each retry)
    require_transaction_for_writes: refuse writes outside transaction() unless autocommit=True
    log_level                     : structlog log level
    """

    model_config = SettingsConfigDict(
        env_prefix="TABLESPINE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Pools ────────────────────────────────────────────────────
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    writer: ConnectionConfig | None = None

    # ── Routing ──────────────────────────────────────────────────
    use_writer_after_transaction: bool = True
    writer_sticky_duration_ms: int = Field(default=5000, ge=0)

    # ── Limits ───────────────────────────────────────────────────
    find_hard_limit: int | None = Field(default=None, ge=0)
    has_many_hard_limit: int | None = Field(default=None, ge=0)

    # ── Transactions ─────────────────────────────────────────────
    retry_on_error: bool = True
    retry_limit: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=200, ge=0)
    require_transaction_for_writes: bool = True

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"


__all__ = [
    "DialectName",
    "ConnectionConfig",
    "TableSpineSettings",
]
