"""Driver registry and factory.

Manifesto:
    Consumers never hard-code driver class names. The registry maps
    dialect names to driver classes and :func:`create_driver` builds an
    unconnected driver from a :class:`~tablespine.settings.ConnectionConfig`.

Features:
    - ``DriverRegistry`` singleton with pre-registered defaults
    - ``register()`` for custom / test drivers
    - ``create_driver()`` factory: config → driver

Tags:
    tablespine, database, registry, factory, singleton

Doc-Types:
    api-reference
"""

from __future__ import annotations

from tablespine.errors import ConfigError
from tablespine.settings import ConnectionConfig

from .base import Driver
from .mysql import MySQLDriver
from .postgresql import PostgreSQLDriver
from .sqlite import SQLiteDriver


class DriverRegistry:
    """
    Registry for driver classes.

    Pre-registered drivers:
    - ``sqlite``: :class:`SQLiteDriver` (aiosqlite)
    - ``postgresql`` / ``postgres``: :class:`PostgreSQLDriver` (asyncpg)
    - ``mysql``: :class:`MySQLDriver` (aiomysql)
    """

    def __init__(self):
        self._factories: dict[str, type[Driver]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories["sqlite"] = SQLiteDriver
        self._factories["postgresql"] = PostgreSQLDriver
        self._factories["postgres"] = PostgreSQLDriver  # Alias
        self._factories["mysql"] = MySQLDriver

    def register(self, name: str, driver_class: type[Driver]) -> None:
        """Register a driver class under a dialect name."""
        self._factories[name.lower()] = driver_class

    def create(self, config: ConnectionConfig) -> Driver:
        name = str(getattr(config.dialect, "value", config.dialect)).lower()
        if name not in self._factories:
            raise ConfigError(f"No driver registered for dialect: {name}")
        return self._factories[name](config)

    def list_drivers(self) -> list[str]:
        return sorted(self._factories.keys())


# Global registry
driver_registry = DriverRegistry()


def create_driver(config: ConnectionConfig) -> Driver:
    """
    Build an (unconnected) driver for a connection descriptor.

    Usage:
        driver = create_driver(ConnectionConfig(dialect="sqlite", database="app.db"))
        await driver.connect()
    """
    return driver_registry.create(config)


__all__ = [
    "DriverRegistry",
    "driver_registry",
    "create_driver",
]
