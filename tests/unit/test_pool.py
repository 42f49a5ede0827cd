from __future__ import annotations

import gc
import threading
import time
import weakref

import pytest

from pooled_sql.domain.errors import ConnectFailed, PoolClosed, PoolExhausted
from pooled_sql.domain.models import ConnectionParams, ConnectionState
from pooled_sql.infrastructure.db_factory import ConnectionFactory
from pooled_sql.pool import ConnectionPool

ACQUIRE_TIMEOUT = 0.2
WORKER_COUNT = 12
ROUNDS_PER_WORKER = 20


def test_acquire_opens_lazily_and_recycles_idle_connection(make_pool, fake_driver):
    pool = make_pool(max_open=2)
    assert fake_driver.connections == []

    conn = pool.acquire()
    assert conn.state is ConnectionState.LEASED
    assert len(fake_driver.connections) == 1
    pool.release(conn)
    assert conn.state is ConnectionState.IDLE

    again = pool.acquire()
    assert again.connection is conn.connection
    assert again.reused is True
    assert len(fake_driver.connections) == 1
    pool.release(again)


def test_open_connections_never_exceed_max_open_under_concurrency(make_pool, fake_driver):
    pool = make_pool(max_open=3, max_idle=3, acquire_timeout=5.0)
    held: set[int] = set()
    held_lock = threading.Lock()
    errors: list[BaseException] = []

    def worker() -> None:
        try:
            for _ in range(ROUNDS_PER_WORKER):
                conn = pool.acquire()
                with held_lock:
                    assert conn.id not in held, "connection leased twice"
                    held.add(conn.id)
                    assert len(held) <= 3
                time.sleep(0.001)
                with held_lock:
                    held.discard(conn.id)
                pool.release(conn)
        except BaseException as exc:  # noqa: BLE001 - surfaced in the main thread
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(WORKER_COUNT)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert fake_driver.peak_live <= 3
    stats = pool.stats()
    assert stats.open_connections <= 3
    assert stats.in_use == 0


def test_acquire_on_saturated_pool_raises_after_timeout(make_pool):
    pool = make_pool(max_open=1)
    held = pool.acquire()

    start = time.monotonic()
    with pytest.raises(PoolExhausted):
        pool.acquire(timeout=ACQUIRE_TIMEOUT)
    elapsed = time.monotonic() - start

    assert elapsed >= ACQUIRE_TIMEOUT
    assert elapsed < ACQUIRE_TIMEOUT + 2.0
    stats = pool.stats()
    assert stats.exhausted_count == 1
    assert stats.wait_count == 1
    assert stats.in_use == 1
    pool.release(held)


def test_zero_timeout_fails_immediately(make_pool):
    pool = make_pool(max_open=1)
    held = pool.acquire()
    with pytest.raises(PoolExhausted):
        pool.acquire(timeout=0)
    pool.release(held)


def test_waiter_receives_connection_released_by_another_thread(make_pool):
    pool = make_pool(max_open=1)
    held = pool.acquire()
    timer = threading.Timer(0.1, pool.release, args=(held,))
    timer.start()
    try:
        conn = pool.acquire(timeout=2.0)
    finally:
        timer.join()
    assert conn.connection is held.connection
    pool.release(conn)


def test_timed_out_waiter_is_never_handed_a_connection(make_pool):
    pool = make_pool(max_open=1)
    held = pool.acquire()
    with pytest.raises(PoolExhausted):
        pool.acquire(timeout=0.05)
    pool.release(held)

    stats = pool.stats()
    assert stats.in_use == 0
    assert stats.idle == 1
    assert pool.acquire(timeout=0).connection is held.connection


def test_double_release_is_a_noop(make_pool):
    pool = make_pool(max_open=2, max_idle=2)
    conn = pool.acquire()
    pool.release(conn)
    pool.release(conn)

    stats = pool.stats()
    assert stats.idle == 1
    assert stats.open_connections == 1
    assert stats.in_use == 0


def test_broken_connection_is_discarded_and_replaced_lazily(make_pool, fake_driver):
    pool = make_pool(max_open=1)
    conn = pool.acquire()
    conn.mark_broken()
    pool.release(conn)

    assert conn.driver_conn.closed
    assert pool.stats().open_connections == 0

    replacement = pool.acquire()
    assert replacement.connection is not conn.connection
    assert len(fake_driver.connections) == 2
    pool.release(replacement)


def test_connection_past_max_lifetime_is_closed_on_release(make_pool, fake_clock):
    pool = make_pool(max_lifetime=10)
    conn = pool.acquire()
    fake_clock.advance(11)
    pool.release(conn)

    assert conn.state is ConnectionState.CLOSED
    assert conn.driver_conn.closed
    stats = pool.stats()
    assert stats.max_lifetime_closed == 1
    assert stats.open_connections == 0


def test_idle_connection_past_max_lifetime_is_not_leased(make_pool, fake_clock, fake_driver):
    pool = make_pool(max_lifetime=10)
    old = pool.acquire()
    pool.release(old)
    fake_clock.advance(11)

    fresh = pool.acquire()
    assert fresh.connection is not old.connection
    assert old.driver_conn.closed
    assert len(fake_driver.connections) == 2
    pool.release(fresh)


def test_release_beyond_max_idle_closes_the_surplus(make_pool):
    pool = make_pool(max_open=3, max_idle=1)
    conns = [pool.acquire() for _ in range(3)]
    for conn in conns:
        pool.release(conn)

    stats = pool.stats()
    assert stats.idle == 1
    assert stats.open_connections == 1
    assert stats.max_idle_closed == 2


def test_connection_left_inside_a_transaction_is_not_recycled(make_pool):
    pool = make_pool()
    conn = pool.acquire()
    conn.driver_conn.begin()
    pool.release(conn)

    assert conn.driver_conn.closed
    assert pool.stats().idle == 0


def test_connect_failure_gives_back_the_reserved_slot(make_pool, fake_driver):
    pool = make_pool(max_open=1)
    fake_driver.fail_open = True
    with pytest.raises(ConnectFailed) as info:
        pool.acquire()
    assert isinstance(info.value.__cause__, ConnectionRefusedError)
    assert pool.stats().open_connections == 0

    fake_driver.fail_open = False
    conn = pool.acquire(timeout=0)
    pool.release(conn)


def test_reap_closes_only_idle_connections_past_idle_time(make_pool, fake_clock):
    pool = make_pool(max_open=3, max_idle=3, max_idle_time=30)
    first, second, third = pool.acquire(), pool.acquire(), pool.acquire()
    pool.release(first)
    fake_clock.advance(40)
    pool.release(second)

    assert pool.reap() == 1

    assert first.driver_conn.closed
    assert not second.driver_conn.closed
    assert not third.driver_conn.closed
    assert third.state is ConnectionState.LEASED
    stats = pool.stats()
    assert stats.max_idle_time_closed == 1
    assert stats.idle == 1
    assert stats.in_use == 1
    assert stats.open_connections == 2
    pool.release(third)


def test_reaper_thread_evicts_idle_connections_in_background(make_pool):
    pool = make_pool(real_clock=True, max_idle_time=0.01, reaper_interval=0.05)
    conn = pool.acquire()
    pool.release(conn)

    deadline = time.monotonic() + 2.0
    while pool.stats().open_connections and time.monotonic() < deadline:
        time.sleep(0.02)

    assert pool.stats().open_connections == 0
    assert conn.driver_conn.closed


def test_ping_on_acquire_replaces_dead_idle_connection(make_pool, fake_driver):
    pool = make_pool(ping_on_acquire=True)
    dead = pool.acquire()
    pool.release(dead)
    dead.driver_conn.alive = False

    conn = pool.acquire()
    assert conn.connection is not dead.connection
    assert dead.driver_conn.closed
    assert len(fake_driver.connections) == 2
    pool.release(conn)


def test_close_shuts_idle_now_and_leased_on_release(make_pool):
    pool = make_pool(max_open=2, max_idle=2)
    idle, leased = pool.acquire(), pool.acquire()
    pool.release(idle)

    pool.close()
    assert pool.closed
    assert idle.driver_conn.closed
    assert not leased.driver_conn.closed

    pool.release(leased)
    assert leased.driver_conn.closed
    assert pool.stats().open_connections == 0

    with pytest.raises(PoolClosed):
        pool.acquire()
    pool.close()


def test_close_wakes_blocked_waiters(make_pool):
    pool = make_pool(max_open=1)
    held = pool.acquire()
    errors: list[BaseException] = []

    def waiter() -> None:
        try:
            pool.acquire(timeout=5.0)
        except BaseException as exc:  # noqa: BLE001 - surfaced in the main thread
            errors.append(exc)

    thread = threading.Thread(target=waiter)
    thread.start()
    time.sleep(0.05)
    pool.close()
    thread.join(timeout=2.0)

    assert not thread.is_alive()
    assert len(errors) == 1 and isinstance(errors[0], PoolClosed)
    pool.release(held)


def test_connection_context_manager_releases_on_error(make_pool):
    pool = make_pool()
    with pytest.raises(RuntimeError):
        with pool.connection() as conn:
            raise RuntimeError("boom")

    assert conn.state is ConnectionState.IDLE
    assert pool.stats().in_use == 0


def test_connection_context_manager_discards_disconnected_connection(make_pool):
    pool = make_pool()
    with pytest.raises(Exception, match="server closed"):
        with pool.connection() as conn:
            conn.driver_conn.alive = False
            conn.driver_conn.ping()

    assert conn.broken
    assert conn.driver_conn.closed
    assert pool.stats().open_connections == 0


def test_stale_release_after_reuse_does_not_free_new_holder(make_pool):
    pool = make_pool(max_open=1)
    first = pool.acquire()
    pool.release(first)
    second = pool.acquire()
    assert second.connection is first.connection

    pool.release(first)

    assert second.active
    assert pool.stats().in_use == 1
    with pytest.raises(PoolExhausted):
        pool.acquire(timeout=0.1)
    pool.release(second)
    assert pool.stats().idle == 1


def test_stale_lease_cannot_mark_new_holder_broken(make_pool):
    pool = make_pool(max_open=1)
    first = pool.acquire()
    pool.release(first)
    second = pool.acquire()

    first.mark_broken()

    assert not second.broken
    pool.release(second)
    assert pool.stats().idle == 1


def test_each_acquire_returns_a_new_lease(make_pool):
    pool = make_pool(max_open=1)
    first = pool.acquire()
    pool.release(first)
    second = pool.acquire()

    assert second is not first
    assert second.generation == first.generation + 1
    assert not first.active
    assert first.reused is False and second.reused is True
    pool.release(second)


def test_dropped_pool_is_collected_and_reaper_exits(fake_driver):
    params = ConnectionParams(driver="fake", database="fake", reaper_interval=0.02)
    pool = ConnectionPool(params, factory=ConnectionFactory(params, driver=fake_driver))
    reaper = pool._reaper
    pool_ref = weakref.ref(pool)
    del pool

    deadline = time.monotonic() + 2.0
    while pool_ref() is not None and time.monotonic() < deadline:
        gc.collect()
        time.sleep(0.01)

    assert pool_ref() is None
    reaper.join(timeout=2.0)
    assert not reaper.is_alive()
