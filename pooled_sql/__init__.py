"""
pooled-sql - a connection-pooled SQL execution engine.

This package provides a small, explicit layer between application code and a
DB-API database driver:

- A bounded, thread-safe connection pool with idle and lifetime limits
- Single-row queries, streaming multi-row cursors and mutations
- Prepared statements with a per-connection statement cache
- Transactions with a single rollback-on-failure path

Arguments are always bound by the driver, never formatted into SQL text.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from pooled_sql.config import Settings, get_settings
from pooled_sql.cursor import PreparedStatement, RowCursor
from pooled_sql.domain import (
    BeginFailed,
    CommitFailed,
    ConnectFailed,
    ConnectionParams,
    ExecFailed,
    ExecResult,
    PoolClosed,
    PooledSqlError,
    PoolExhausted,
    PoolStats,
    QueryFailed,
    RollbackFailed,
    Row,
    StatementClosed,
    TransactionAborted,
    TransactionClosed,
    TransactionState,
)
from pooled_sql.executor import Executor, open_executor
from pooled_sql.pool import ConnectionPool, Lease, PooledConnection
from pooled_sql.transaction import Transaction
from pooled_sql.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "ConnectionParams",
    "Settings",
    "get_settings",
    # Engine
    "ConnectionPool",
    "Executor",
    "Lease",
    "PooledConnection",
    "PreparedStatement",
    "RowCursor",
    "Transaction",
    "open_executor",
    # Results
    "ExecResult",
    "PoolStats",
    "Row",
    "TransactionState",
    # Errors
    "BeginFailed",
    "CommitFailed",
    "ConnectFailed",
    "ExecFailed",
    "PoolClosed",
    "PooledSqlError",
    "PoolExhausted",
    "QueryFailed",
    "RollbackFailed",
    "StatementClosed",
    "TransactionAborted",
    "TransactionClosed",
    # Logging
    "configure_logging",
    "get_logger",
]
