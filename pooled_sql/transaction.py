"""
Transactions bound to one exclusively leased connection.

A Transaction moves from open to committed or rolled_back exactly once and
releases its connection right after that transition. Failed steps do not roll
back on their own; the context manager and Executor.transact are the single
place where a failure turns into a rollback. A rollback that fails is logged
and attached to the original error, never raised in its place. A transaction
garbage collected while still open discards its connection, which ends the
transaction on the server without committing.

Usage:
    with executor.begin() as tx:
        first = tx.execute("UPDATE demo_user SET age = ? WHERE id = ?", (30, 1))
        second = tx.execute("UPDATE demo_user SET age = ? WHERE id = ?", (30, 2))
        tx.require(first.affected_rows == 1 and second.affected_rows == 1, "expected one row each")
        tx.commit()
"""

from __future__ import annotations

import weakref
from typing import Any, List, Optional, Sequence, Union

from pooled_sql.cursor import PreparedStatement, RowCursor, fetch_first, send
from pooled_sql.domain.errors import (
    CommitFailed,
    ExecFailed,
    PooledSqlError,
    QueryFailed,
    RollbackFailed,
    TransactionAborted,
    TransactionClosed,
)
from pooled_sql.domain.models import ExecResult, Row, TransactionState
from pooled_sql.pool import ConnectionPool, Lease
from pooled_sql.utils.logging import get_logger

log = get_logger(__name__)


class Transaction:
    def __init__(self, pool: ConnectionPool, conn: Lease) -> None:
        self._pool = pool
        self._conn = conn
        self._state = TransactionState.OPEN
        self._children: List[Union[RowCursor, PreparedStatement]] = []
        self._released = False
        self._reclaim = weakref.finalize(self, _reclaim_transaction, pool, conn)
        self._reclaim.atexit = False

    def __repr__(self) -> str:
        return f"<Transaction conn_id={self._conn.id} state={self._state.value}>"

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def connection_id(self) -> int:
        return self._conn.id

    def _check_open(self) -> None:
        if self._state is not TransactionState.OPEN:
            raise TransactionClosed(f"transaction already {self._state.value}")

    def _track(self, child: Union[RowCursor, PreparedStatement]) -> None:
        self._children = [c for c in self._children if not c.closed]
        self._children.append(child)

    # -- statements ------------------------------------------------------

    def execute(self, sql: str, args: Sequence[Any] = ()) -> ExecResult:
        self._check_open()
        driver_conn = self._conn.driver_conn
        return send(self._conn, ExecFailed, sql, lambda: driver_conn.execute(sql, args))

    def query_one(self, sql: str, args: Sequence[Any] = ()) -> Optional[Row]:
        self._check_open()
        driver_conn = self._conn.driver_conn
        cursor = send(self._conn, QueryFailed, sql, lambda: driver_conn.query(sql, args))
        return fetch_first(self._conn, cursor, sql)

    def query_many(self, sql: str, args: Sequence[Any] = ()) -> RowCursor:
        """Rows read on the transaction's connection; closed at commit/rollback at the latest."""
        self._check_open()
        driver_conn = self._conn.driver_conn
        cursor = send(self._conn, QueryFailed, sql, lambda: driver_conn.query(sql, args))
        rows = RowCursor(self._conn, cursor, sql)
        self._track(rows)
        return rows

    def prepare(self, sql: str) -> PreparedStatement:
        self._check_open()
        driver_conn = self._conn.driver_conn
        handle = send(
            self._conn,
            QueryFailed,
            sql,
            lambda: self._conn.statements.checkout(sql, driver_conn.prepare),
        )
        statement = PreparedStatement(self._conn, handle)
        self._track(statement)
        return statement

    def require(self, condition: bool, message: str) -> None:
        """
        Check a business rule inside the transaction.

        Raises
        ------
        TransactionAborted
            If `condition` is false. The transaction is still open; the
            surrounding context manager or Executor.transact rolls it back.
        """
        self._check_open()
        if not condition:
            raise TransactionAborted(message)

    # -- resolution ------------------------------------------------------

    def commit(self) -> None:
        """
        Commit the transaction.

        Raises
        ------
        CommitFailed
            If the database rejected the commit. Whatever the driver left open
            is rolled back and the transaction ends rolled_back.
        """
        self._check_open()
        self._close_children()
        driver_conn = self._conn.driver_conn
        try:
            driver_conn.commit()
        except Exception as exc:
            error = CommitFailed(f"commit rejected: {exc}")
            error.__cause__ = exc
            if driver_conn.is_disconnect(exc):
                self._conn.mark_broken()
            elif self._conn.is_dirty():
                try:
                    driver_conn.rollback()
                except Exception as rollback_exc:  # noqa: BLE001 - reported on `error`
                    self._conn.mark_broken()
                    _attach_rollback_failure(error, rollback_exc, self._conn.id)
            log.warning("transaction commit failed", extra={"conn_id": self._conn.id, "error": str(exc)})
            self._finish(TransactionState.ROLLED_BACK)
            raise error from exc
        log.debug("transaction committed", extra={"conn_id": self._conn.id})
        self._finish(TransactionState.COMMITTED)

    def rollback(self) -> None:
        """
        Roll the transaction back.

        Raises
        ------
        RollbackFailed
            If the driver rejected the rollback. The transaction still ends
            rolled_back and its connection is discarded rather than reused.
        """
        self._check_open()
        self._close_children()
        try:
            self._conn.driver_conn.rollback()
        except Exception as exc:
            self._conn.mark_broken()
            self._finish(TransactionState.ROLLED_BACK)
            raise RollbackFailed(f"rollback rejected: {exc}") from exc
        log.debug("transaction rolled back", extra={"conn_id": self._conn.id})
        self._finish(TransactionState.ROLLED_BACK)

    def abort(self, cause: BaseException) -> None:
        """
        Roll back because of `cause`. A rollback failure is logged and attached
        to `cause`; the caller keeps raising `cause`.
        """
        if self._state is not TransactionState.OPEN:
            return
        try:
            self.rollback()
        except RollbackFailed as rollback_error:
            _attach_rollback_failure(cause, rollback_error, self._conn.id)

    def _close_children(self) -> None:
        children, self._children = self._children, []
        for child in children:
            child.close()

    def _finish(self, state: TransactionState) -> None:
        self._state = state
        if not self._released:
            self._released = True
            self._reclaim.detach()
            self._pool.release(self._conn)

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is not TransactionState.OPEN:
            return
        if exc is not None:
            self.abort(exc)
            return
        log.warning("transaction left open; rolling back", extra={"conn_id": self._conn.id})
        self.rollback()


def _reclaim_transaction(pool: ConnectionPool, conn: Lease) -> None:
    log.warning(
        "transaction dropped while open; discarding its connection",
        extra={"conn_id": conn.id},
    )
    conn.mark_broken()
    pool.release(conn)


def _attach_rollback_failure(cause: BaseException, rollback_exc: BaseException, conn_id: int) -> None:
    if isinstance(rollback_exc, RollbackFailed):
        rollback_error = rollback_exc
    else:
        rollback_error = RollbackFailed(f"rollback rejected: {rollback_exc}")
        rollback_error.__cause__ = rollback_exc
    log.error(
        "rollback failed after transaction error",
        extra={"conn_id": conn_id, "cause": str(cause), "error": str(rollback_error)},
    )
    cause.add_note(f"rollback also failed: {rollback_error}")
    if isinstance(cause, PooledSqlError):
        cause.rollback_error = rollback_error


__all__ = ["Transaction"]
