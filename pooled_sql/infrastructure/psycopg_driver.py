"""
PostgreSQL driver backed by psycopg 3.

Connections run in autocommit mode so that BEGIN/COMMIT/ROLLBACK are issued
explicitly by the engine. Prepared statements use psycopg's server-side
preparation (``prepare=True``). PostgreSQL has no last-insert-id call, so a
mutation written with ``RETURNING id`` reports the first returned value as
``last_insert_id``. COMMIT on a transaction the server has already aborted
is reported as a failure instead of the silent rollback PostgreSQL performs.
"""

from __future__ import annotations

from typing import Any, Sequence

import psycopg
import psycopg.errors
from psycopg import pq
from psycopg.conninfo import make_conninfo

from pooled_sql.domain.models import ConnectionParams, ExecResult
from pooled_sql.infrastructure.driver import DbapiConnection


def build_dsn(params: ConnectionParams) -> str:
    """Compose a libpq connection string from connection parameters."""
    return make_conninfo(
        host=params.host,
        port=params.port,
        user=params.user or None,
        password=params.password or None,
        dbname=params.database,
    )


class PsycopgConnection(DbapiConnection):
    @property
    def in_transaction(self) -> bool:
        return self.raw.info.transaction_status != pq.TransactionStatus.IDLE

    def is_disconnect(self, exc: BaseException) -> bool:
        return bool(self.raw.broken or self.raw.closed)

    def _run(self, cursor: Any, sql: str, args: Sequence[Any], prepared: bool) -> None:
        cursor.execute(sql, tuple(args) if args else None, prepare=True if prepared else None)

    def _exec_result(self, cursor: Any, sql: str) -> ExecResult:
        last_insert_id = None
        if cursor.description is not None:
            row = cursor.fetchone()
            if row and isinstance(row[0], int):
                last_insert_id = row[0]
        return ExecResult(affected_rows=max(cursor.rowcount, 0), last_insert_id=last_insert_id)

    def commit(self) -> None:
        # An aborted transaction answers COMMIT with a ROLLBACK tag, not an error.
        if self.raw.info.transaction_status == pq.TransactionStatus.INERROR:
            raise psycopg.errors.InFailedSqlTransaction(
                "transaction is aborted; COMMIT would roll it back"
            )
        cursor = self.raw.cursor()
        try:
            cursor.execute("COMMIT")
            if cursor.statusmessage == "ROLLBACK":
                raise psycopg.errors.InFailedSqlTransaction(
                    "server rolled the transaction back on COMMIT"
                )
        finally:
            cursor.close()


class PsycopgDriver:
    name: str = "postgres"
    placeholder: str = "%s"

    def open(self, params: ConnectionParams) -> PsycopgConnection:
        raw = psycopg.connect(
            build_dsn(params),
            autocommit=True,
            connect_timeout=max(1, int(params.connect_timeout)),
        )
        return PsycopgConnection(raw)


__all__ = ["PsycopgConnection", "PsycopgDriver", "build_dsn"]
