"""
Pooled async drivers, one per supported dialect.

Each driver wraps the pooling library of its backend and exposes the same
small surface to :class:`~tablespine.database.Database`:

- ``PostgreSQLDriver``: asyncpg pool, ``$n`` placeholders
- ``MySQLDriver``: aiomysql pool, ``%s`` placeholders
- ``SQLiteDriver``: aiosqlite connections in a queue, ``?`` placeholders
"""

from .base import Driver, DriverConnection
from .mysql import MySQLDriver
from .postgresql import PostgreSQLDriver
from .registry import DriverRegistry, create_driver, driver_registry
from .sqlite import SQLiteDriver

__all__ = [
    "Driver",
    "DriverConnection",
    "PostgreSQLDriver",
    "MySQLDriver",
    "SQLiteDriver",
    "DriverRegistry",
    "driver_registry",
    "create_driver",
]
