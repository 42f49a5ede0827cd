"""
Pytest configuration for pooled-sql.

Provides fixtures for:
- An in-memory fake driver and fake clock for pool mechanics
- A temporary SQLite database seeded with the demo_user table
- PostgreSQL settings and availability checks for integration tests
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Callable, Generator, List, Optional, Sequence

import psycopg
import pytest

from pooled_sql.config import Settings, get_settings
from pooled_sql.domain.models import ConnectionParams, ExecResult
from pooled_sql.executor import Executor
from pooled_sql.infrastructure.db_factory import ConnectionFactory
from pooled_sql.pool import ConnectionPool
from scripts.seed_demo import create_schema, seed_users


# -- fake driver -------------------------------------------------------------


class FakeDisconnect(Exception):
    """Raised by fake connections that lost their server."""


class FakeCursor:
    def __init__(self, rows: Sequence[tuple]) -> None:
        self._rows = list(rows)
        self.description = [("value",)]
        self.closed = False

    def fetchone(self) -> Optional[tuple]:
        return self._rows.pop(0) if self._rows else None

    def fetchmany(self, size: int) -> List[tuple]:
        batch, self._rows = self._rows[:size], self._rows[size:]
        return batch

    def close(self) -> None:
        self.closed = True


class FakeStatement:
    def __init__(self, conn: "FakeConnection", sql: str) -> None:
        self.sql = sql
        self._conn = conn
        self.closed = False

    def query(self, args: Sequence[Any]) -> FakeCursor:
        return self._conn.query(self.sql, args)

    def execute(self, args: Sequence[Any]) -> ExecResult:
        return self._conn.execute(self.sql, args)

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, driver: "FakeDriver", ident: int) -> None:
        self.driver = driver
        self.ident = ident
        self.alive = True
        self.closed = False
        self.statements: List[tuple] = []
        self._in_tx = False

    @property
    def in_transaction(self) -> bool:
        return self._in_tx

    def _check(self) -> None:
        if self.closed or not self.alive:
            raise FakeDisconnect("server closed the connection unexpectedly")

    def ping(self) -> None:
        self._check()

    def prepare(self, sql: str) -> FakeStatement:
        self._check()
        self.driver.prepared += 1
        return FakeStatement(self, sql)

    def query(self, sql: str, args: Sequence[Any]) -> FakeCursor:
        self._check()
        self.statements.append((sql, tuple(args)))
        return FakeCursor([(self.ident,)])

    def execute(self, sql: str, args: Sequence[Any]) -> ExecResult:
        self._check()
        self.statements.append((sql, tuple(args)))
        return ExecResult(affected_rows=1)

    def begin(self) -> None:
        self._check()
        self._in_tx = True

    def commit(self) -> None:
        self._check()
        if self.driver.fail_commit:
            raise RuntimeError("could not serialize access due to concurrent update")
        self._in_tx = False

    def rollback(self) -> None:
        self._check()
        if self.driver.fail_rollback:
            raise RuntimeError("rollback rejected")
        self._in_tx = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            with self.driver.lock:
                self.driver.live -= 1

    def is_disconnect(self, exc: BaseException) -> bool:
        return isinstance(exc, FakeDisconnect) or self.closed


class FakeDriver:
    name = "fake"
    placeholder = "?"

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.connections: List[FakeConnection] = []
        self.live = 0
        self.peak_live = 0
        self.prepared = 0
        self.fail_open = False
        self.fail_ping = False
        self.fail_commit = False
        self.fail_rollback = False

    def open(self, params: ConnectionParams) -> FakeConnection:
        if self.fail_open:
            raise ConnectionRefusedError("connection refused")
        with self.lock:
            conn = FakeConnection(self, len(self.connections) + 1)
            conn.alive = not self.fail_ping
            self.connections.append(conn)
            self.live += 1
            self.peak_live = max(self.peak_live, self.live)
        return conn


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_pool(
    fake_driver: FakeDriver, fake_clock: FakeClock
) -> Generator[Callable[..., ConnectionPool], None, None]:
    """
    Factory for pools backed by the fake driver and fake clock.

    Keyword arguments override ConnectionParams fields; the reaper is off
    unless reaper_interval is given. Pass real_clock=True to age connections
    in wall-clock time.
    """
    pools: List[ConnectionPool] = []

    def _make(real_clock: bool = False, **overrides: Any) -> ConnectionPool:
        fields = {"driver": "fake", "database": "fake", "reaper_interval": 0, "acquire_timeout": 1.0}
        fields.update(overrides)
        params = ConnectionParams(**fields)
        kwargs: dict = {"factory": ConnectionFactory(params, driver=fake_driver)}
        if not real_clock:
            kwargs["clock"] = fake_clock
        pool = ConnectionPool(params, **kwargs)
        pools.append(pool)
        return pool

    yield _make
    for pool in pools:
        pool.close()


@pytest.fixture
def fake_executor(make_pool: Callable[..., ConnectionPool]) -> Executor:
    return Executor(make_pool(max_open=2, max_idle=2))


# -- sqlite ------------------------------------------------------------------


@pytest.fixture
def sqlite_params(tmp_path: Path) -> ConnectionParams:
    return ConnectionParams(
        driver="sqlite",
        database=str(tmp_path / "demo.db"),
        max_open=4,
        max_idle=4,
        acquire_timeout=2.0,
        reaper_interval=0,
    )


@pytest.fixture
def make_executor(
    sqlite_params: ConnectionParams,
) -> Generator[Callable[..., Executor], None, None]:
    """
    Factory for executors over the temporary SQLite database, seeded with
    the demo users (ids 1-5).
    """
    executors: List[Executor] = []

    def _make(**overrides: Any) -> Executor:
        params = sqlite_params.model_copy(update=overrides)
        executor = Executor(ConnectionPool(params))
        executors.append(executor)
        if len(executors) == 1:
            create_schema(executor, reset=True)
            seed_users(executor)
        return executor

    yield _make
    for executor in executors:
        executor.close()


@pytest.fixture
def executor(make_executor: Callable[..., Executor]) -> Executor:
    return make_executor()


# -- postgres ----------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_driver="postgres",
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "pooled_sql"),
        pool_max_open=4,
        pool_reaper_interval=0,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def db_connection_available(test_settings: Settings) -> bool:
    """
    Check if the PostgreSQL database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    params = test_settings.connection_params()
    try:
        with psycopg.connect(
            host=params.host,
            port=params.port,
            user=params.user,
            password=params.password,
            dbname=params.database,
            connect_timeout=3,
        ) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except Exception:
        return False


@pytest.fixture
def pg_executor(
    test_settings: Settings, db_connection_available: bool
) -> Generator[Executor, None, None]:
    """
    Executor over PostgreSQL with a freshly seeded demo_user table.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    executor = Executor(ConnectionPool(test_settings.connection_params()))
    try:
        create_schema(executor, reset=True)
        seed_users(executor)
        yield executor
    finally:
        executor.close()
