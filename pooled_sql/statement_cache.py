"""
Per-connection cache of prepared statement handles keyed by SQL text.

Handles are checked out by PreparedStatement and checked back in on close.
Least recently used entries are closed once the cache is over capacity, but a
handle still checked out is never evicted, so the cache may overshoot its
capacity while many statements are open at once.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterator

from pooled_sql.infrastructure.driver import DriverStatement
from pooled_sql.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class _Entry:
    handle: DriverStatement
    refs: int = 0


class StatementCache:
    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, sql: object) -> bool:
        return sql in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def checkout(self, sql: str, prepare: Callable[[str], DriverStatement]) -> DriverStatement:
        """Return the cached handle for `sql`, preparing it on a miss."""
        entry = self._entries.get(sql)
        if entry is not None:
            self._entries.move_to_end(sql)
            entry.refs += 1
            return entry.handle

        handle = prepare(sql)
        if self.capacity > 0:
            self._entries[sql] = _Entry(handle, refs=1)
            self._evict()
        return handle

    def checkin(self, handle: DriverStatement) -> None:
        """Give a handle back; uncached handles are closed immediately."""
        entry = self._entries.get(handle.sql)
        if entry is None or entry.handle is not handle:
            _close_handle(handle)
            return
        entry.refs = max(entry.refs - 1, 0)
        self._evict()

    def _evict(self) -> None:
        if len(self._entries) <= self.capacity:
            return
        for sql, entry in list(self._entries.items()):
            if len(self._entries) <= self.capacity:
                break
            if entry.refs == 0:
                del self._entries[sql]
                _close_handle(entry.handle)

    def clear(self) -> None:
        """Close every cached handle."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            _close_handle(entry.handle)


def _close_handle(handle: DriverStatement) -> None:
    try:
        handle.close()
    except Exception as exc:  # noqa: BLE001 - a failed close leaves nothing to recover
        log.debug("statement close failed", extra={"sql": handle.sql, "error": str(exc)})


__all__ = ["StatementCache"]
