"""
Infrastructure package for the pooled SQL engine.

Centralizes database connectivity concerns (driver contract, concrete drivers,
physical connection factory). Keep this layer focused on I/O, decoupled from
pool bookkeeping and executor logic.
"""

from pooled_sql.infrastructure.db_factory import (
    ConnectionFactory,
    available_drivers,
    get_driver,
    register_driver,
)
from pooled_sql.infrastructure.driver import (
    DbapiConnection,
    Driver,
    DriverConnection,
    DriverCursor,
    DriverStatement,
)
from pooled_sql.infrastructure.psycopg_driver import PsycopgDriver, build_dsn
from pooled_sql.infrastructure.sqlite_driver import SqliteDriver

__all__ = [
    "ConnectionFactory",
    "DbapiConnection",
    "Driver",
    "DriverConnection",
    "DriverCursor",
    "DriverStatement",
    "PsycopgDriver",
    "SqliteDriver",
    "available_drivers",
    "build_dsn",
    "get_driver",
    "register_driver",
]
