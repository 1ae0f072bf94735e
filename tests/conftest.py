"""
Shared pytest fixtures for tablespine tests.

This module provides:
- Middleware registry cleanup for test isolation
- An in-memory SQLite ``Database`` with the test schema, bound to ``AppModel``
- Recording-driver databases for statement-level assertions
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest

from tablespine.database import Database
from tablespine.middleware import clear_middlewares
from tests._support.databases import make_settings
from tests._support.fakes import RecordingDriver
from tests._support.models import SCHEMA, AppModel


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests that touch a real database as integration tests."""
    for item in items:
        if "sqlite_db" in getattr(item, "fixturenames", ()):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Registry Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_middlewares() -> Iterator[None]:
    clear_middlewares()
    yield
    clear_middlewares()


# =============================================================================
# Databases
# =============================================================================


@pytest.fixture
async def sqlite_db() -> AsyncIterator[Database]:
    """In-memory SQLite database with the test schema, bound to AppModel."""
    db = Database(make_settings(), name="test")
    await db.connect()
    for ddl in SCHEMA:
        await db.execute(ddl, autocommit=True)
    AppModel.bind(db)
    yield db
    await db.close()


@pytest.fixture
def recording_log() -> list:
    return []


@pytest.fixture
def sqlite_fake(recording_log) -> Database:
    """SQLite-dialect database over recording reader and writer drivers."""
    reader = RecordingDriver("sqlite", label="reader", log=recording_log)
    writer = RecordingDriver("sqlite", label="writer", log=recording_log)
    db = Database(make_settings("sqlite"), name="fake-sqlite", reader=reader, writer=writer)
    AppModel.bind(db)
    return db


@pytest.fixture
def mysql_fake(recording_log) -> Database:
    """MySQL-dialect database over recording drivers (no RETURNING)."""
    reader = RecordingDriver("mysql", label="reader", log=recording_log)
    writer = RecordingDriver("mysql", label="writer", log=recording_log)
    db = Database(make_settings("mysql"), name="fake-mysql", reader=reader, writer=writer)
    AppModel.bind(db)
    return db


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "tablespine.db"
