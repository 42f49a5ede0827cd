"""
Physical connection factory for the pooled SQL engine.

Resolves the configured driver by name and opens single connections for the
pool. A connection is only handed out after it answered a ping, so an
unreachable server or bad credentials surface as ConnectFailed at the point
the pool needed a new connection.
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

from pooled_sql.domain.errors import ConnectFailed
from pooled_sql.domain.models import ConnectionParams
from pooled_sql.infrastructure.driver import Driver, DriverConnection
from pooled_sql.infrastructure.psycopg_driver import PsycopgDriver
from pooled_sql.infrastructure.sqlite_driver import SqliteDriver
from pooled_sql.utils.logging import get_logger

log = get_logger(__name__)

_registry_lock = threading.Lock()
_DRIVERS: Dict[str, Callable[[], Driver]] = {
    "sqlite": SqliteDriver,
    "sqlite3": SqliteDriver,
    "postgres": PsycopgDriver,
    "postgresql": PsycopgDriver,
}


def register_driver(name: str, factory: Callable[[], Driver]) -> None:
    """Make a driver available to ConnectionParams.driver under `name`."""
    with _registry_lock:
        _DRIVERS[name.lower()] = factory


def available_drivers() -> list[str]:
    """List registered driver names."""
    return sorted(_DRIVERS)


def get_driver(name: str) -> Driver:
    """
    Instantiate the driver registered under `name`.

    Raises
    ------
    ValueError
        If no driver is registered under that name.
    """
    factory = _DRIVERS.get(name.lower())
    if factory is None:
        raise ValueError(f"Unknown driver '{name}'. Available: {', '.join(available_drivers())}")
    return factory()


class ConnectionFactory:
    """
    Opens validated physical connections for one set of parameters.

    Parameters
    ----------
    params : ConnectionParams
        Where to connect.
    driver : Optional[Driver]
        Explicit driver instance; defaults to the one named by params.driver.
    """

    def __init__(self, params: ConnectionParams, driver: Optional[Driver] = None) -> None:
        self.params = params
        self.driver = driver if driver is not None else get_driver(params.driver)

    def connect(self) -> DriverConnection:
        """
        Open one connection and ping it.

        Raises
        ------
        ConnectFailed
            If the driver cannot open the connection or the ping fails.
        """
        target = f"{self.driver.name}://{self.params.host}:{self.params.port}/{self.params.database}"
        try:
            conn = self.driver.open(self.params)
        except Exception as exc:
            log.warning("connect failed", extra={"target": target, "error": str(exc)})
            raise ConnectFailed(f"could not connect to {target}: {exc}") from exc

        try:
            conn.ping()
        except Exception as exc:
            log.warning("ping after connect failed", extra={"target": target, "error": str(exc)})
            _close_quietly(conn)
            raise ConnectFailed(f"connected to {target} but ping failed: {exc}") from exc
        return conn


def _close_quietly(conn: DriverConnection) -> None:
    try:
        conn.close()
    except Exception as exc:  # noqa: BLE001 - best-effort cleanup of an unusable connection
        log.debug("close failed", extra={"error": str(exc)})


__all__ = [
    "ConnectionFactory",
    "available_drivers",
    "get_driver",
    "register_driver",
]
