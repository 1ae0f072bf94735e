"""Settings helpers for test databases."""

from __future__ import annotations

from tablespine.settings import ConnectionConfig, TableSpineSettings


def make_settings(dialect: str = "sqlite", **overrides) -> TableSpineSettings:
    """In-memory connection settings with retry delays disabled."""
    return TableSpineSettings(
        connection=ConnectionConfig(dialect=dialect, database=":memory:"),
        retry_delay_ms=0,
        **overrides,
    )


__all__ = [
    "make_settings",
]
