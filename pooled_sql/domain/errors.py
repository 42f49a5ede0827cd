"""
Exception hierarchy for the pooled SQL engine.

Every failure surfaced to callers derives from PooledSqlError. The driver's own
exception is always chained as ``__cause__`` so nothing is lost in translation.
An empty single-row query is not an error: ``query_one`` returns None.
"""

from __future__ import annotations

from typing import Optional


class PooledSqlError(Exception):
    """
    Base class for engine errors.

    Attributes
    ----------
    sql : Optional[str]
        Statement text involved in the failure, when there is one.
    rollback_error : Optional[RollbackFailed]
        Set when a rollback attempted after this error failed as well.
    """

    def __init__(self, message: str, *, sql: Optional[str] = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.rollback_error: Optional[RollbackFailed] = None


class ConnectFailed(PooledSqlError):
    """A new physical connection could not be opened or did not answer a ping."""


class PoolExhausted(PooledSqlError):
    """No connection became available before the acquire timeout."""


class PoolClosed(PooledSqlError):
    """The pool has been shut down."""


class QueryFailed(PooledSqlError):
    """A row-returning statement failed to execute or to scan."""


class ExecFailed(PooledSqlError):
    """A mutation failed."""


class BeginFailed(PooledSqlError):
    """A transaction could not be started."""


class CommitFailed(PooledSqlError):
    """The database rejected the commit."""


class RollbackFailed(PooledSqlError):
    """The database rejected the rollback."""


class TransactionClosed(PooledSqlError):
    """An operation was attempted on a committed or rolled back transaction."""


class TransactionAborted(PooledSqlError):
    """A business rule checked inside a transaction did not hold."""


class StatementClosed(PooledSqlError):
    """A prepared statement was used after close()."""


__all__ = [
    "PooledSqlError",
    "ConnectFailed",
    "PoolExhausted",
    "PoolClosed",
    "QueryFailed",
    "ExecFailed",
    "BeginFailed",
    "CommitFailed",
    "RollbackFailed",
    "TransactionClosed",
    "TransactionAborted",
    "StatementClosed",
]
