"""
Caller-facing API of the pooled SQL engine.

Each Executor call leases a connection from its ConnectionPool and gives it
back on every exit path. Single-row queries and mutations release before
returning; multi-row cursors and prepared statements hold their lease until
closed; transactions hold theirs until commit or rollback.

Arguments are always bound positionally with the driver's placeholder (`?`
for sqlite, `%s` for postgres). Caller values never become part of the SQL
text.

Includes a single transparent retry for a pooled connection that turns out to
be dead on first use, using tenacity.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence, TypeVar

from tenacity import retry, retry_if_exception_type, stop_after_attempt

from pooled_sql.config import Settings, get_settings
from pooled_sql.cursor import ConnectionBroken, PreparedStatement, RowCursor, fetch_first, send
from pooled_sql.domain.errors import (
    BeginFailed,
    ConnectFailed,
    ExecFailed,
    PoolClosed,
    PoolExhausted,
    QueryFailed,
)
from pooled_sql.domain.models import ConnectionParams, ExecResult, PoolStats, Row, TransactionState
from pooled_sql.pool import ConnectionPool, Lease
from pooled_sql.transaction import Transaction
from pooled_sql.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state) -> None:
    log.info(
        "retrying on a new connection after a dead pooled connection",
        extra={"attempt": retry_state.attempt_number},
    )


class Executor:
    """
    Runs statements against a ConnectionPool.

    Parameters
    ----------
    pool : ConnectionPool
        The pool every operation leases from. The executor owns it: close()
        closes the pool.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool

    @classmethod
    def from_params(cls, params: ConnectionParams) -> "Executor":
        return cls(ConnectionPool(params))

    # -- leasing ---------------------------------------------------------

    @retry(
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(ConnectionBroken),
        before_sleep=_log_retry,
        reraise=True,
    )
    def _leased(
        self,
        op: Callable[[Lease], T],
        timeout: Optional[float],
        hold: bool = False,
    ) -> T:
        """
        Run `op` on a leased connection. The lease is released afterwards
        unless `hold` is set and `op` succeeded; the result then owns it.
        """
        conn = self.pool.acquire(timeout)
        try:
            result = op(conn)
        except BaseException:
            self.pool.release(conn)
            raise
        if not hold:
            self.pool.release(conn)
        return result

    def _run(
        self,
        op: Callable[[Lease], T],
        timeout: Optional[float],
        hold: bool = False,
    ) -> T:
        try:
            return self._leased(op, timeout, hold)
        except ConnectionBroken as broken:
            raise broken.error from broken.error.__cause__

    # -- statements ------------------------------------------------------

    def query_one(
        self, sql: str, args: Sequence[Any] = (), *, timeout: Optional[float] = None
    ) -> Optional[Row]:
        """
        Run a query and return its first row, or None when it matched nothing.

        Raises
        ------
        QueryFailed
            If the statement or the scan failed.
        PoolExhausted, ConnectFailed
            If no connection could be leased.
        """

        def op(conn: Lease) -> Optional[Row]:
            cursor = send(
                conn, QueryFailed, sql, lambda: conn.driver_conn.query(sql, args), retryable=True
            )
            return fetch_first(conn, cursor, sql)

        return self._run(op, timeout)

    def query_many(
        self, sql: str, args: Sequence[Any] = (), *, timeout: Optional[float] = None
    ) -> RowCursor:
        """
        Run a query and stream its rows.

        The returned cursor holds a connection until it is exhausted, fails or
        is closed; use it as a context manager so every exit path releases it.
        """

        def op(conn: Lease) -> RowCursor:
            cursor = send(
                conn, QueryFailed, sql, lambda: conn.driver_conn.query(sql, args), retryable=True
            )
            return RowCursor(conn, cursor, sql, on_close=lambda: self.pool.release(conn))

        return self._run(op, timeout, hold=True)

    def execute(
        self, sql: str, args: Sequence[Any] = (), *, timeout: Optional[float] = None
    ) -> ExecResult:
        """
        Run a mutation and report affected rows and the generated id.

        Raises
        ------
        ExecFailed
            If the statement failed.
        """

        def op(conn: Lease) -> ExecResult:
            return send(
                conn, ExecFailed, sql, lambda: conn.driver_conn.execute(sql, args), retryable=True
            )

        return self._run(op, timeout)

    def prepare(self, sql: str, *, timeout: Optional[float] = None) -> PreparedStatement:
        """
        Prepare `sql` on a leased connection.

        The statement keeps that connection until close(). Preparing many
        statements without closing them starves the pool.
        """

        def op(conn: Lease) -> PreparedStatement:
            handle = send(
                conn,
                QueryFailed,
                sql,
                lambda: conn.statements.checkout(sql, conn.driver_conn.prepare),
                retryable=True,
            )
            return PreparedStatement(conn, handle, on_close=lambda: self.pool.release(conn))

        return self._run(op, timeout, hold=True)

    # -- transactions ----------------------------------------------------

    def begin(self, *, timeout: Optional[float] = None) -> Transaction:
        """
        Start a transaction on an exclusively held connection.

        Raises
        ------
        BeginFailed
            If no connection could be leased or BEGIN was rejected.
        """

        def op(conn: Lease) -> Transaction:
            send(conn, BeginFailed, "BEGIN", conn.driver_conn.begin, retryable=True)
            return Transaction(self.pool, conn)

        try:
            return self._run(op, timeout, hold=True)
        except (PoolExhausted, ConnectFailed, PoolClosed) as exc:
            raise BeginFailed(f"could not start transaction: {exc}") from exc

    def transact(self, fn: Callable[[Transaction], T], *, timeout: Optional[float] = None) -> T:
        """
        Run `fn` inside a transaction and commit if it returns normally.

        Any exception from `fn` (a failed step, a TransactionAborted from
        Transaction.require) rolls the transaction back and is re-raised. If
        `fn` resolves the transaction itself, transact leaves it alone.

        Example
        -------
            def move(tx):
                a = tx.execute("UPDATE demo_user SET age = ? WHERE id = ?", (30, 1))
                b = tx.execute("UPDATE demo_user SET age = ? WHERE id = ?", (30, 2))
                tx.require(a.affected_rows == 1 and b.affected_rows == 1, "both rows must change")

            executor.transact(move)
        """
        tx = self.begin(timeout=timeout)
        with tx:
            result = fn(tx)
            if tx.state is TransactionState.OPEN:
                tx.commit()
        return result

    # -- lifecycle -------------------------------------------------------

    def ping(self, *, timeout: Optional[float] = None) -> None:
        """Lease a connection and check that the server answers."""

        def op(conn: Lease) -> None:
            send(conn, QueryFailed, "ping", conn.driver_conn.ping, retryable=True)

        self._run(op, timeout)

    @property
    def placeholder(self) -> str:
        return self.pool.placeholder

    def stats(self) -> PoolStats:
        return self.pool.stats()

    def close(self) -> None:
        self.pool.close()

    def __enter__(self) -> "Executor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_executor(
    settings: Optional[Settings] = None,
    params: Optional[ConnectionParams] = None,
) -> Executor:
    """
    Build an Executor over a fresh pool.

    Parameters
    ----------
    settings : Optional[Settings]
        Source of connection parameters; defaults to get_settings().
    params : Optional[ConnectionParams]
        Explicit parameters; take precedence over `settings`.
    """
    if params is None:
        params = (settings or get_settings()).connection_params()
    log.info(
        "opening connection pool",
        extra={"driver": params.driver, "database": params.database, "max_open": params.max_open},
    )
    return Executor(ConnectionPool(params))


__all__ = ["Executor", "open_executor"]
