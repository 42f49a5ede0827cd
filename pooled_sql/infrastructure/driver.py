"""
Driver contract for the pooled SQL engine.

The pool and executor only speak to the capability set declared here: open,
ping, prepare, query, execute, begin/commit/rollback and close. Any DB-API
style driver can back the engine by implementing DriverConnection;
DbapiConnection does the common work for PEP 249 connections so concrete
drivers only supply connect, transaction probing and disconnect detection.
"""

from __future__ import annotations

import abc
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from pooled_sql.domain.errors import StatementClosed
from pooled_sql.domain.models import ConnectionParams, ExecResult


@runtime_checkable
class DriverCursor(Protocol):
    """Forward-only cursor over a result set."""

    description: Any

    def fetchone(self) -> Optional[Sequence[Any]]:
        ...

    def fetchmany(self, size: int) -> List[Sequence[Any]]:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class DriverStatement(Protocol):
    """Prepared statement bound to one driver connection."""

    sql: str

    def query(self, args: Sequence[Any]) -> DriverCursor:
        ...

    def execute(self, args: Sequence[Any]) -> ExecResult:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class DriverConnection(Protocol):
    """
    One physical database connection.

    Arguments are always bound positionally using the driver's native
    placeholder style; implementations must never format them into the SQL.
    """

    @property
    def in_transaction(self) -> bool:
        ...

    def ping(self) -> None:
        ...

    def prepare(self, sql: str) -> DriverStatement:
        ...

    def query(self, sql: str, args: Sequence[Any]) -> DriverCursor:
        ...

    def execute(self, sql: str, args: Sequence[Any]) -> ExecResult:
        ...

    def begin(self) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...

    def close(self) -> None:
        ...

    def is_disconnect(self, exc: BaseException) -> bool:
        """Return True when `exc` means this connection is no longer usable."""
        ...


@runtime_checkable
class Driver(Protocol):
    """Factory for physical connections."""

    name: str
    placeholder: str

    def open(self, params: ConnectionParams) -> DriverConnection:
        ...


_INSERT_VERBS = frozenset({"INSERT", "REPLACE"})


def statement_verb(sql: str) -> str:
    """First keyword of `sql`, upper-cased; empty for blank text."""
    words = sql.lstrip(" \t\r\n(").split(None, 1)
    return words[0].upper() if words else ""


class DbapiStatement:
    """
    Statement handle for PEP 249 connections.

    DB-API has no portable prepare call, so the handle remembers the SQL text
    and asks its connection to run it with the driver's prepared-execution
    hint each time.
    """

    def __init__(self, connection: "DbapiConnection", sql: str) -> None:
        self.sql = sql
        self._connection = connection
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise StatementClosed("statement handle is closed", sql=self.sql)

    def query(self, args: Sequence[Any]) -> DriverCursor:
        self._check_open()
        return self._connection._query(self.sql, args, prepared=True)

    def execute(self, args: Sequence[Any]) -> ExecResult:
        self._check_open()
        return self._connection._execute(self.sql, args, prepared=True)

    def close(self) -> None:
        self.closed = True


class DbapiConnection(abc.ABC):
    """
    Shared DriverConnection implementation over a PEP 249 connection.

    The wrapped connection runs in autocommit mode; transactions are explicit
    BEGIN/COMMIT/ROLLBACK statements so both shipped drivers behave the same.
    """

    ping_sql: str = "SELECT 1"

    def __init__(self, raw: Any) -> None:
        self.raw = raw

    @property
    @abc.abstractmethod
    def in_transaction(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def is_disconnect(self, exc: BaseException) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def _run(self, cursor: Any, sql: str, args: Sequence[Any], prepared: bool) -> None:
        """Send one statement on `cursor`. Drivers override to pass prepare hints."""
        cursor.execute(sql, tuple(args))

    def _exec_result(self, cursor: Any, sql: str) -> ExecResult:
        # lastrowid keeps the previous insert's id across other statements.
        affected = max(cursor.rowcount, 0)
        last_insert_id = None
        if affected and statement_verb(sql) in _INSERT_VERBS:
            last_insert_id = getattr(cursor, "lastrowid", None)
        return ExecResult(affected_rows=affected, last_insert_id=last_insert_id)

    def _query(self, sql: str, args: Sequence[Any], prepared: bool = False) -> DriverCursor:
        cursor = self.raw.cursor()
        try:
            self._run(cursor, sql, args, prepared)
        except BaseException:
            cursor.close()
            raise
        return cursor

    def _execute(self, sql: str, args: Sequence[Any], prepared: bool = False) -> ExecResult:
        cursor = self.raw.cursor()
        try:
            self._run(cursor, sql, args, prepared)
            return self._exec_result(cursor, sql)
        finally:
            cursor.close()

    def ping(self) -> None:
        cursor = self.raw.cursor()
        try:
            cursor.execute(self.ping_sql)
            cursor.fetchone()
        finally:
            cursor.close()

    def prepare(self, sql: str) -> DriverStatement:
        return DbapiStatement(self, sql)

    def query(self, sql: str, args: Sequence[Any]) -> DriverCursor:
        return self._query(sql, args)

    def execute(self, sql: str, args: Sequence[Any]) -> ExecResult:
        return self._execute(sql, args)

    def _control(self, sql: str) -> None:
        cursor = self.raw.cursor()
        try:
            cursor.execute(sql)
        finally:
            cursor.close()

    def begin(self) -> None:
        self._control("BEGIN")

    def commit(self) -> None:
        self._control("COMMIT")

    def rollback(self) -> None:
        self._control("ROLLBACK")

    def close(self) -> None:
        self.raw.close()


__all__ = [
    "DbapiConnection",
    "DbapiStatement",
    "Driver",
    "DriverConnection",
    "DriverCursor",
    "DriverStatement",
    "statement_verb",
]
