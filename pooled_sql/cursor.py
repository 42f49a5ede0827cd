"""
Row cursors, prepared statements and the driver-call helpers shared by the
executor and transactions.

A RowCursor may own a lease (rows streamed straight from Executor.query_many)
or borrow one (rows read inside a transaction or through a prepared
statement). Either way it calls its `on_close` hook exactly once: when the
rows run out, when a fetch fails, or when the caller closes it. A cursor or
statement that owns a lease and is dropped without being closed gives the
lease back when it is garbage collected.
"""

from __future__ import annotations

import weakref
from typing import Any, Callable, List, Optional, Sequence, Type, TypeVar

from pooled_sql.domain.errors import ExecFailed, PooledSqlError, QueryFailed, StatementClosed
from pooled_sql.domain.models import ExecResult, Row
from pooled_sql.infrastructure.driver import DriverCursor, DriverStatement
from pooled_sql.pool import Lease
from pooled_sql.statement_cache import StatementCache
from pooled_sql.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class ConnectionBroken(Exception):
    """
    Internal signal: a reused connection turned out to be dead on first use.

    Raised only before any result was produced, which is what makes a single
    transparent retry on a fresh lease safe.
    """

    def __init__(self, error: PooledSqlError) -> None:
        super().__init__(str(error))
        self.error = error


def send(
    conn: Lease,
    error_cls: Type[PooledSqlError],
    sql: str,
    call: Callable[[], T],
    retryable: bool = False,
) -> T:
    """
    Run one driver call, translating driver exceptions into `error_cls`.

    A disconnect marks the connection broken. When `retryable` is set and the
    connection came from the idle set, ConnectionBroken is raised instead so
    the caller can retry on another lease.
    """
    try:
        return call()
    except PooledSqlError:
        raise
    except Exception as exc:
        error = error_cls(f"{error_cls.__name__}: {exc}", sql=sql)
        error.__cause__ = exc
        if conn.driver_conn.is_disconnect(exc):
            conn.mark_broken()
            if retryable and conn.reused:
                raise ConnectionBroken(error) from exc
        raise error from exc


def _as_row(raw: Optional[Sequence[Any]]) -> Optional[Row]:
    return None if raw is None else tuple(raw)


def fetch_first(conn: Lease, cursor: DriverCursor, sql: str) -> Optional[Row]:
    """Scan at most one row and close the cursor whatever happens."""
    try:
        return send(conn, QueryFailed, sql, lambda: _as_row(cursor.fetchone()))
    finally:
        close_cursor(cursor)


def close_cursor(cursor: DriverCursor) -> None:
    try:
        cursor.close()
    except Exception as exc:  # noqa: BLE001 - rows are already consumed or abandoned
        log.debug("cursor close failed", extra={"error": str(exc)})


def _reclaim_cursor(cursor: DriverCursor, on_close: Callable[[], None], sql: str) -> None:
    log.warning("cursor dropped without close; releasing its connection", extra={"sql": sql})
    try:
        close_cursor(cursor)
    finally:
        on_close()


def _reclaim_statement(
    statements: StatementCache,
    handle: DriverStatement,
    on_close: Callable[[], None],
) -> None:
    log.warning(
        "prepared statement dropped without close; releasing its connection",
        extra={"sql": handle.sql},
    )
    try:
        statements.checkin(handle)
    finally:
        on_close()


class RowCursor:
    """
    Forward-only, non-restartable iterator over a result set.

    Example
    -------
        with executor.query_many("SELECT id, name FROM demo_user WHERE id > ?", (0,)) as rows:
            for row in rows:
                print(row)
    """

    def __init__(
        self,
        conn: Lease,
        cursor: DriverCursor,
        sql: str,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self._conn = conn
        self._cursor = cursor
        self._on_close = on_close
        self.sql = sql
        self.closed = False
        self.columns = tuple(col[0] for col in (cursor.description or ()))
        self._reclaim: Optional[weakref.finalize] = None
        if on_close is not None:
            self._reclaim = weakref.finalize(self, _reclaim_cursor, cursor, on_close, sql)
            self._reclaim.atexit = False

    def __iter__(self) -> "RowCursor":
        return self

    def __next__(self) -> Row:
        if self.closed:
            raise StopIteration
        try:
            row = send(self._conn, QueryFailed, self.sql, self._cursor.fetchone)
        except BaseException:
            self.close()
            raise
        if row is None:
            self.close()
            raise StopIteration
        return tuple(row)

    def fetchmany(self, size: int) -> List[Row]:
        """Up to `size` further rows; an empty list once exhausted."""
        if self.closed:
            return []
        try:
            rows = send(self._conn, QueryFailed, self.sql, lambda: self._cursor.fetchmany(size))
        except BaseException:
            self.close()
            raise
        if not rows:
            self.close()
        return [tuple(row) for row in rows]

    def fetchall(self) -> List[Row]:
        """Every remaining row; the cursor is closed afterwards."""
        return list(self)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._reclaim is not None:
            self._reclaim.detach()
        try:
            close_cursor(self._cursor)
        finally:
            if self._on_close is not None:
                self._on_close()

    def __enter__(self) -> "RowCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class PreparedStatement:
    """
    A statement prepared on one connection and reusable with new arguments.

    Every call runs on the same physical connection. The statement holds the
    connection until close(); a statement that owns its lease and is dropped
    unclosed releases it when collected, with a warning.
    """

    def __init__(
        self,
        conn: Lease,
        handle: DriverStatement,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self._conn = conn
        self._handle = handle
        self._on_close = on_close
        self._cursors: List[RowCursor] = []
        self.sql = handle.sql
        self.closed = False
        self._reclaim: Optional[weakref.finalize] = None
        if on_close is not None:
            self._reclaim = weakref.finalize(
                self, _reclaim_statement, conn.statements, handle, on_close
            )
            self._reclaim.atexit = False

    @property
    def connection_id(self) -> int:
        return self._conn.id

    def _check_open(self) -> None:
        if self.closed:
            raise StatementClosed("prepared statement is closed", sql=self.sql)

    def query_one(self, args: Sequence[Any] = ()) -> Optional[Row]:
        self._check_open()
        cursor = send(self._conn, QueryFailed, self.sql, lambda: self._handle.query(args))
        return fetch_first(self._conn, cursor, self.sql)

    def query_many(self, args: Sequence[Any] = ()) -> RowCursor:
        self._check_open()
        cursor = send(self._conn, QueryFailed, self.sql, lambda: self._handle.query(args))
        rows = RowCursor(self._conn, cursor, self.sql)
        self._cursors = [c for c in self._cursors if not c.closed]
        self._cursors.append(rows)
        return rows

    def execute(self, args: Sequence[Any] = ()) -> ExecResult:
        self._check_open()
        return send(self._conn, ExecFailed, self.sql, lambda: self._handle.execute(args))

    def close(self) -> None:
        """Close open cursors, return the handle to the cache and run the close hook."""
        if self.closed:
            return
        self.closed = True
        if self._reclaim is not None:
            self._reclaim.detach()
        try:
            for rows in self._cursors:
                rows.close()
            self._cursors.clear()
            self._conn.statements.checkin(self._handle)
        finally:
            if self._on_close is not None:
                self._on_close()

    def __enter__(self) -> "PreparedStatement":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "ConnectionBroken",
    "PreparedStatement",
    "RowCursor",
    "close_cursor",
    "fetch_first",
    "send",
]
