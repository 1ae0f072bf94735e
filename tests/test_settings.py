"""Tests for ``tablespine.settings`` and the driver registry."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tablespine.drivers import MySQLDriver, PostgreSQLDriver, SQLiteDriver, create_driver, driver_registry
from tablespine.errors import ConfigError
from tablespine.settings import ConnectionConfig, DialectName, TableSpineSettings


class TestConnectionConfig:
    def test_defaults(self):
        config = ConnectionConfig()
        assert config.dialect is DialectName.SQLITE
        assert config.database == ":memory:"
        assert config.default_port() is None

    def test_dsn_omits_password(self):
        config = ConnectionConfig(dialect="postgresql", host="db", user="app", password="s3cret", database="main")
        assert config.to_dsn() == "postgresql://app@db:5432/main"
        assert "s3cret" not in config.to_dsn()

    def test_mysql_default_port(self):
        assert ConnectionConfig(dialect="mysql", database="main").to_dsn() == "mysql://localhost:3306/main"


class TestTableSpineSettings:
    def test_defaults(self):
        settings = TableSpineSettings()
        assert settings.writer is None
        assert settings.use_writer_after_transaction is True
        assert settings.writer_sticky_duration_ms == 5000
        assert settings.retry_on_error is True
        assert settings.retry_limit == 3
        assert settings.retry_delay_ms == 200
        assert settings.require_transaction_for_writes is True
        assert settings.find_hard_limit is None

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("TABLESPINE_RETRY_LIMIT", "7")
        monkeypatch.setenv("TABLESPINE_CONNECTION__DIALECT", "mysql")
        monkeypatch.setenv("TABLESPINE_CONNECTION__HOST", "mysql.internal")
        settings = TableSpineSettings()
        assert settings.retry_limit == 7
        assert settings.connection.dialect is DialectName.MYSQL
        assert settings.connection.host == "mysql.internal"

    def test_negative_limits_rejected(self):
        with pytest.raises(ValidationError):
            TableSpineSettings(retry_limit=-1)


class TestDriverRegistry:
    def test_create_by_dialect(self):
        assert isinstance(create_driver(ConnectionConfig(dialect="sqlite")), SQLiteDriver)
        assert isinstance(create_driver(ConnectionConfig(dialect="postgresql")), PostgreSQLDriver)
        assert isinstance(create_driver(ConnectionConfig(dialect="mysql")), MySQLDriver)

    def test_drivers_start_disconnected(self):
        assert create_driver(ConnectionConfig()).is_connected is False

    def test_unknown_name(self):
        with pytest.raises(ConfigError):
            driver_registry.create(ConnectionConfig().model_copy(update={"dialect": "oracle"}))

    def test_list_drivers(self):
        assert driver_registry.list_drivers() == ["mysql", "postgres", "postgresql", "sqlite"]
