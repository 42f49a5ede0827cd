"""
Domain models for the pooled SQL engine.

ConnectionParams is the immutable description of where and how to connect and
how the pool should behave. ExecResult, PoolStats and the state enums are the
structured values returned to callers.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from pydantic import BaseModel, Field

Row = Tuple[Any, ...]


class ConnectionParams(BaseModel):
    """
    Connection and pool parameters. Immutable after construction.
    """

    driver: str = Field("sqlite", description="Registered driver name (sqlite, postgres).")
    host: str = Field("localhost", description="Database host.")
    port: int = Field(5432, ge=0, le=65535, description="Database port.")
    user: str = Field("", description="Login role.")
    password: str = Field("", repr=False, description="Login password.")
    database: str = Field(..., min_length=1, description="Database name, or file path for sqlite.")

    max_open: int = Field(10, ge=1, description="Maximum physical connections.")
    max_idle: int = Field(2, ge=0, description="Idle connections kept for reuse.")
    max_idle_time: Optional[float] = Field(
        None, gt=0, description="Seconds an idle connection may sit before the reaper closes it."
    )
    max_lifetime: Optional[float] = Field(
        None, gt=0, description="Seconds after creation a connection is retired on release."
    )
    connect_timeout: float = Field(5.0, gt=0, description="Seconds allowed to open a connection.")
    acquire_timeout: float = Field(30.0, ge=0, description="Default seconds to wait for a lease.")
    reaper_interval: float = Field(
        60.0, ge=0, description="Seconds between idle reaper passes; 0 disables the reaper."
    )
    statement_cache_size: int = Field(
        32, ge=0, description="Prepared statements cached per connection; 0 disables caching."
    )
    ping_on_acquire: bool = Field(
        False, description="Ping idle connections before leasing them."
    )

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "arbitrary_types_allowed": False,
    }


class ExecResult(BaseModel):
    """
    Outcome of a mutation.
    """

    affected_rows: int = Field(0, ge=0, description="Rows changed by the statement.")
    last_insert_id: Optional[int] = Field(
        None, description="Generated identifier reported by the driver, if any."
    )

    model_config = {"frozen": True}


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    LEASED = "leased"
    CLOSED = "closed"


class TransactionState(str, enum.Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class PoolStats:
    """
    Point-in-time snapshot of pool counters.
    """

    max_open: int
    open_connections: int
    idle: int
    in_use: int
    wait_count: int
    wait_duration: float
    exhausted_count: int
    max_idle_closed: int
    max_idle_time_closed: int
    max_lifetime_closed: int


__all__ = [
    "Row",
    "ConnectionParams",
    "ExecResult",
    "ConnectionState",
    "TransactionState",
    "PoolStats",
]
