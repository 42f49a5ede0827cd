"""
SQLite driver backed by the standard library sqlite3 module.

`database` is the file path; host, port and credentials are ignored. Each
pooled connection is a separate sqlite3 connection to the same file, opened
with check_same_thread=False because leases move between threads. Statement
preparation relies on sqlite3's own per-connection statement cache.
"""

from __future__ import annotations

import sqlite3

from pooled_sql.domain.models import ConnectionParams
from pooled_sql.infrastructure.driver import DbapiConnection


class SqliteConnection(DbapiConnection):
    @property
    def in_transaction(self) -> bool:
        return self.raw.in_transaction

    def is_disconnect(self, exc: BaseException) -> bool:
        # Any attribute access on a closed sqlite3 connection raises ProgrammingError.
        try:
            self.raw.total_changes
        except sqlite3.ProgrammingError:
            return True
        return False


class SqliteDriver:
    name: str = "sqlite"
    placeholder: str = "?"

    def open(self, params: ConnectionParams) -> SqliteConnection:
        raw = sqlite3.connect(
            params.database,
            timeout=params.connect_timeout,
            isolation_level=None,
            check_same_thread=False,
            cached_statements=max(params.statement_cache_size, 16),
        )
        try:
            raw.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error:
            raw.close()
            raise
        return SqliteConnection(raw)


__all__ = ["SqliteConnection", "SqliteDriver"]
