from __future__ import annotations

import pytest
from pydantic import ValidationError

from pooled_sql.config import Settings, get_settings
from pooled_sql.domain.models import ConnectionParams


def test_defaults_describe_a_local_sqlite_pool(monkeypatch):
    for name in ("DB_DRIVER", "DB_NAME", "DB_POOL_MAX_OPEN", "DB_POOL_MAX_IDLE", "DB_POOL_MAX_IDLE_TIME"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.db_driver == "sqlite"
    assert settings.pool_max_open == 10
    assert settings.pool_max_idle == 2
    assert settings.pool_max_idle_time is None


def test_environment_overrides_are_read(monkeypatch):
    monkeypatch.setenv("DB_DRIVER", "postgres")
    monkeypatch.setenv("DB_POOL_MAX_OPEN", "3")
    monkeypatch.setenv("DB_POOL_MAX_IDLE_TIME", "12.5")
    monkeypatch.setenv("DB_PING_ON_ACQUIRE", "true")

    settings = get_settings()

    assert settings.db_driver == "postgres"
    assert settings.pool_max_open == 3
    assert settings.pool_max_idle_time == 12.5
    assert settings.db_ping_on_acquire is True
    assert get_settings() is settings


def test_connection_params_carry_pool_limits():
    settings = Settings(
        _env_file=None,
        db_driver="sqlite",
        db_name="/tmp/x.db",
        pool_max_open=4,
        pool_max_lifetime=300,
    )

    params = settings.connection_params()

    assert isinstance(params, ConnectionParams)
    assert params.database == "/tmp/x.db"
    assert params.max_open == 4
    assert params.max_lifetime == 300


def test_connection_params_are_immutable_and_hide_password():
    params = ConnectionParams(database="app", password="s3cret")

    with pytest.raises(ValidationError):
        params.max_open = 5
    assert "s3cret" not in repr(params)


@pytest.mark.parametrize("field,value", [("max_open", 0), ("max_idle", -1), ("max_lifetime", 0)])
def test_invalid_pool_limits_are_rejected(field, value):
    with pytest.raises(ValidationError):
        ConnectionParams(database="app", **{field: value})
