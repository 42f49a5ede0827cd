"""
Bounded, thread-safe connection pool.

Usage:
    from pooled_sql.pool import ConnectionPool

    pool = ConnectionPool(params)
    with pool.connection(timeout=2.0) as lease:
        lease.driver_conn.ping()
    pool.close()

Bookkeeping (idle deque, leased set, total count) is guarded by one
Condition. Physical connects and closes always happen outside the lock: a
slot is reserved by bumping the total before connecting and given back if the
connect fails. The most recently released idle connection is leased first;
the reaper trims from the oldest end. Each acquire returns a new Lease; a
release through a lease that is no longer current is ignored.
"""

from __future__ import annotations

import itertools
import threading
import time
import weakref
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Generator, List, Optional, Set

from pooled_sql.domain.errors import ConnectFailed, PoolClosed, PoolExhausted
from pooled_sql.domain.models import ConnectionParams, ConnectionState, PoolStats
from pooled_sql.infrastructure.db_factory import ConnectionFactory
from pooled_sql.infrastructure.driver import DriverConnection
from pooled_sql.statement_cache import StatementCache
from pooled_sql.utils.logging import get_logger

log = get_logger(__name__)

_ids = itertools.count(1)


class PooledConnection:
    """
    One physical connection plus the pool's bookkeeping for it.

    Identity-hashed: the pool keeps leased connections in a set.
    """

    def __init__(
        self,
        driver_conn: DriverConnection,
        created_at: float,
        statement_cache_size: int = 0,
    ) -> None:
        self.id = next(_ids)
        self.driver_conn = driver_conn
        self.created_at = created_at
        self.last_used_at = created_at
        self.state = ConnectionState.IDLE
        self.broken = False
        self.generation = 0
        self.statements = StatementCache(statement_cache_size)

    def __repr__(self) -> str:
        return f"<PooledConnection id={self.id} state={self.state.value} broken={self.broken}>"

    def mark_broken(self) -> None:
        """Flag the connection so the pool discards it on release."""
        self.broken = True

    def age(self, now: float) -> float:
        return now - self.created_at

    def idle_for(self, now: float) -> float:
        return now - self.last_used_at

    def is_dirty(self) -> bool:
        """True when the connection is mid-transaction or cannot report its state."""
        try:
            return bool(self.driver_conn.in_transaction)
        except Exception:  # noqa: BLE001 - unknown state is treated as unusable
            return True

    def close(self) -> None:
        """Close cached statements and the physical connection. Never raises."""
        self.state = ConnectionState.CLOSED
        self.statements.clear()
        try:
            self.driver_conn.close()
        except Exception as exc:  # noqa: BLE001 - best-effort close of a retired connection
            log.debug("driver close failed", extra={"conn_id": self.id, "error": str(exc)})


class Lease:
    """
    One caller's claim on a PooledConnection.

    Every acquire hands out a new Lease stamped with the connection's lease
    generation. The pool bumps the generation each time the connection is
    leased again, so a Lease kept after release goes stale and releasing it
    does nothing.
    """

    __slots__ = ("connection", "generation", "reused", "__weakref__")

    def __init__(self, connection: PooledConnection, generation: int, reused: bool) -> None:
        self.connection = connection
        self.generation = generation
        self.reused = reused

    def __repr__(self) -> str:
        return (
            f"<Lease conn_id={self.connection.id} generation={self.generation} "
            f"active={self.active}>"
        )

    @property
    def active(self) -> bool:
        conn = self.connection
        return conn.generation == self.generation and conn.state is ConnectionState.LEASED

    @property
    def id(self) -> int:
        return self.connection.id

    @property
    def driver_conn(self) -> DriverConnection:
        return self.connection.driver_conn

    @property
    def statements(self) -> StatementCache:
        return self.connection.statements

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def broken(self) -> bool:
        return self.connection.broken

    def mark_broken(self) -> None:
        if self.active:
            self.connection.mark_broken()

    def is_dirty(self) -> bool:
        return self.connection.is_dirty()


class _IdleReaper(threading.Thread):
    """
    Background thread that calls ConnectionPool.reap() periodically.

    Holds the pool weakly; a pool dropped without close() is still collected
    and the thread exits on its next pass.
    """

    def __init__(self, pool: "ConnectionPool", interval: float) -> None:
        super().__init__(name="pooled-sql-reaper", daemon=True)
        self._pool_ref = weakref.ref(pool)
        self._interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self._interval):
            pool = self._pool_ref()
            if pool is None:
                return
            try:
                pool.reap()
            except Exception:  # noqa: BLE001 - keep reaping after an unexpected failure
                log.exception("idle reaper pass failed")
            del pool

    def stop(self) -> None:
        self._stop_event.set()


class ConnectionPool:
    """
    Lends physical connections to one caller at a time.

    Parameters
    ----------
    params : ConnectionParams
        Connection target and pool limits.
    factory : Optional[ConnectionFactory]
        Opens physical connections; defaults to one built from `params`.
    clock : Callable[[], float]
        Monotonic clock used for connection age and idle time.
    """

    def __init__(
        self,
        params: ConnectionParams,
        factory: Optional[ConnectionFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.params = params
        self._factory = factory if factory is not None else ConnectionFactory(params)
        self._clock = clock
        self._cond = threading.Condition(threading.Lock())
        self._idle: Deque[PooledConnection] = deque()
        self._leased: Set[PooledConnection] = set()
        self._total = 0
        self._closed = False

        self._wait_count = 0
        self._wait_duration = 0.0
        self._exhausted_count = 0
        self._max_idle_closed = 0
        self._max_idle_time_closed = 0
        self._max_lifetime_closed = 0

        self._reaper: Optional[_IdleReaper] = None
        if params.reaper_interval > 0:
            self._reaper = _IdleReaper(self, params.reaper_interval)
            self._reaper.start()

    # -- leasing ---------------------------------------------------------

    def acquire(self, timeout: Optional[float] = None) -> Lease:
        """
        Lease a connection.

        Parameters
        ----------
        timeout : Optional[float]
            Seconds to wait for a connection; defaults to params.acquire_timeout.

        Returns
        -------
        Lease
            A fresh claim on the connection; give it back with release().

        Raises
        ------
        PoolExhausted
            If no connection became available in time. Nothing is held.
        ConnectFailed
            If a new physical connection was needed and could not be opened.
        PoolClosed
            If the pool has been closed.
        """
        if timeout is None:
            timeout = self.params.acquire_timeout
        deadline = time.monotonic() + timeout

        while True:
            lease = self._take(deadline, timeout)
            if lease is None:
                return self._open_leased()
            if self._validate(lease.connection):
                return lease
            self._discard_leased(lease.connection, "failed validation")

    def _take(self, deadline: float, timeout: float) -> Optional[Lease]:
        """Lease an idle connection, or reserve a slot and return None."""
        waited_since: Optional[float] = None
        with self._cond:
            try:
                while True:
                    if self._closed:
                        raise PoolClosed("connection pool is closed")
                    if self._idle:
                        return self._lease(self._idle.pop(), reused=True)
                    if self._total < self.params.max_open:
                        self._total += 1
                        return None
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self._exhausted_count += 1
                        raise PoolExhausted(
                            f"no connection available within {timeout:.3f}s "
                            f"(max_open={self.params.max_open})"
                        )
                    if waited_since is None:
                        waited_since = time.monotonic()
                        self._wait_count += 1
                    self._cond.wait(remaining)
            finally:
                if waited_since is not None:
                    self._wait_duration += time.monotonic() - waited_since

    def _validate(self, conn: PooledConnection) -> bool:
        max_lifetime = self.params.max_lifetime
        if max_lifetime is not None and conn.age(self._clock()) >= max_lifetime:
            with self._cond:
                self._max_lifetime_closed += 1
            return False
        if self.params.ping_on_acquire:
            try:
                conn.driver_conn.ping()
            except Exception as exc:  # noqa: BLE001 - any ping failure means replace it
                log.info("idle connection failed ping", extra={"conn_id": conn.id, "error": str(exc)})
                conn.mark_broken()
                return False
        return True

    def _open_leased(self) -> Lease:
        try:
            driver_conn = self._factory.connect()
        except ConnectFailed:
            with self._cond:
                self._total -= 1
                self._cond.notify()
            raise

        conn = PooledConnection(driver_conn, self._clock(), self.params.statement_cache_size)
        lease: Optional[Lease] = None
        with self._cond:
            if self._closed:
                self._total -= 1
            else:
                lease = self._lease(conn, reused=False)
        if lease is None:
            conn.close()
            raise PoolClosed("connection pool is closed")
        log.debug("connection opened", extra={"conn_id": conn.id})
        return lease

    def _lease(self, conn: PooledConnection, reused: bool) -> Lease:
        conn.generation += 1
        conn.state = ConnectionState.LEASED
        self._leased.add(conn)
        return Lease(conn, conn.generation, reused)

    def _discard_leased(self, conn: PooledConnection, reason: str) -> None:
        with self._cond:
            self._leased.discard(conn)
            conn.state = ConnectionState.CLOSED
            self._total -= 1
            self._cond.notify()
        log.debug("connection discarded", extra={"conn_id": conn.id, "reason": reason})
        conn.close()

    def release(self, lease: Lease) -> None:
        """
        Give a lease back.

        The connection is recycled into the idle set unless it is broken,
        past max_lifetime, still inside a transaction, the idle set is full,
        or the pool is closed; then it is closed instead. Releasing a lease
        that is no longer current (already released, even if the connection
        has since been leased to someone else) is a no-op.
        """
        conn = lease.connection
        if not lease.active:
            log.warning(
                "release ignored: lease is not current",
                extra={"conn_id": conn.id, "generation": lease.generation},
            )
            return
        dirty = conn.is_dirty() if not conn.broken else True
        reason: Optional[str] = None
        with self._cond:
            if conn not in self._leased or conn.generation != lease.generation:
                log.warning(
                    "release ignored: lease is not current",
                    extra={"conn_id": conn.id, "generation": lease.generation},
                )
                return
            self._leased.discard(conn)
            now = self._clock()
            max_lifetime = self.params.max_lifetime
            if self._closed:
                reason = "pool closed"
            elif conn.broken:
                reason = "broken"
            elif dirty:
                reason = "open transaction"
            elif max_lifetime is not None and conn.age(now) >= max_lifetime:
                reason = "max lifetime"
                self._max_lifetime_closed += 1
            elif len(self._idle) >= self.params.max_idle:
                reason = "max idle"
                self._max_idle_closed += 1

            if reason is None:
                conn.state = ConnectionState.IDLE
                conn.last_used_at = now
                self._idle.append(conn)
            else:
                conn.state = ConnectionState.CLOSED
                self._total -= 1
            self._cond.notify()

        if reason is not None:
            log.debug("connection retired on release", extra={"conn_id": conn.id, "reason": reason})
            conn.close()

    @contextmanager
    def connection(self, timeout: Optional[float] = None) -> Generator[Lease, None, None]:
        """
        Scoped lease with guaranteed release.

        Example
        -------
            with pool.connection() as lease:
                lease.driver_conn.execute("UPDATE t SET n = n + 1", ())
        """
        lease = self.acquire(timeout)
        try:
            yield lease
        except Exception as exc:
            if lease.driver_conn.is_disconnect(exc):
                lease.mark_broken()
            raise
        finally:
            self.release(lease)

    # -- maintenance -----------------------------------------------------

    def reap(self) -> int:
        """
        Close idle connections past max_idle_time or max_lifetime, then trim
        the idle set down to max_idle. Leased connections are never touched.

        Returns
        -------
        int
            Number of connections closed.
        """
        now = self._clock()
        victims: List[PooledConnection] = []
        with self._cond:
            keep: Deque[PooledConnection] = deque()
            for conn in self._idle:
                if self.params.max_lifetime is not None and conn.age(now) >= self.params.max_lifetime:
                    self._max_lifetime_closed += 1
                    victims.append(conn)
                elif (
                    self.params.max_idle_time is not None
                    and conn.idle_for(now) >= self.params.max_idle_time
                ):
                    self._max_idle_time_closed += 1
                    victims.append(conn)
                else:
                    keep.append(conn)
            while len(keep) > self.params.max_idle:
                self._max_idle_closed += 1
                victims.append(keep.popleft())
            self._idle = keep
            self._total -= len(victims)
            if victims:
                self._cond.notify(len(victims))

        for conn in victims:
            conn.close()
        if victims:
            log.debug("idle connections reaped", extra={"count": len(victims)})
        return len(victims)

    def close(self) -> None:
        """
        Shut the pool down. Idle connections are closed now; leased ones are
        closed as they are released. Safe to call more than once.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._total -= len(idle)
            self._cond.notify_all()

        if self._reaper is not None:
            self._reaper.stop()
            if self._reaper is not threading.current_thread():
                self._reaper.join(timeout=5.0)
        for conn in idle:
            conn.close()
        log.info("connection pool closed", extra={"closed_idle": len(idle)})

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def placeholder(self) -> str:
        """Positional placeholder understood by the pool's driver."""
        return self._factory.driver.placeholder

    def stats(self) -> PoolStats:
        with self._cond:
            return PoolStats(
                max_open=self.params.max_open,
                open_connections=self._total,
                idle=len(self._idle),
                in_use=len(self._leased),
                wait_count=self._wait_count,
                wait_duration=self._wait_duration,
                exhausted_count=self._exhausted_count,
                max_idle_closed=self._max_idle_closed,
                max_idle_time_closed=self._max_idle_time_closed,
                max_lifetime_closed=self._max_lifetime_closed,
            )

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["ConnectionPool", "Lease", "PooledConnection"]
