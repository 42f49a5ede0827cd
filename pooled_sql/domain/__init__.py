"""
Domain package for the pooled SQL engine.

Exports the value types and the exception hierarchy shared by the pool,
executor and transaction layers.
"""

from pooled_sql.domain.errors import (
    BeginFailed,
    CommitFailed,
    ConnectFailed,
    ExecFailed,
    PoolClosed,
    PooledSqlError,
    PoolExhausted,
    QueryFailed,
    RollbackFailed,
    StatementClosed,
    TransactionAborted,
    TransactionClosed,
)
from pooled_sql.domain.models import (
    ConnectionParams,
    ConnectionState,
    ExecResult,
    PoolStats,
    Row,
    TransactionState,
)

__all__ = [
    # Models
    "ConnectionParams",
    "ConnectionState",
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
]
