"""
Configuration settings for the pooled SQL engine.

Uses Pydantic Settings to load environment variables for the database
connection, pool limits and logging. Settings.connection_params() turns the
flat environment view into the immutable ConnectionParams the pool consumes.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pooled_sql.domain.models import ConnectionParams


class Settings(BaseSettings):
    # Database
    db_driver: str = Field("sqlite", alias="DB_DRIVER")
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("pooled_sql.db", alias="DB_NAME")
    db_connect_timeout: float = Field(5.0, alias="DB_CONNECT_TIMEOUT")
    db_acquire_timeout: float = Field(30.0, alias="DB_ACQUIRE_TIMEOUT")
    db_statement_cache_size: int = Field(32, alias="DB_STATEMENT_CACHE_SIZE")
    db_ping_on_acquire: bool = Field(False, alias="DB_PING_ON_ACQUIRE")

    # Pool
    pool_max_open: int = Field(10, alias="DB_POOL_MAX_OPEN")
    pool_max_idle: int = Field(2, alias="DB_POOL_MAX_IDLE")
    pool_max_idle_time: Optional[float] = Field(None, alias="DB_POOL_MAX_IDLE_TIME")
    pool_max_lifetime: Optional[float] = Field(None, alias="DB_POOL_MAX_LIFETIME")
    pool_reaper_interval: float = Field(60.0, alias="DB_POOL_REAPER_INTERVAL")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def connection_params(self) -> ConnectionParams:
        """
        Build the immutable connection parameters for a pool.
        """
        return ConnectionParams(
            driver=self.db_driver,
            host=self.db_host,
            port=self.db_port,
            user=self.db_user,
            password=self.db_password,
            database=self.db_name,
            max_open=self.pool_max_open,
            max_idle=self.pool_max_idle,
            max_idle_time=self.pool_max_idle_time,
            max_lifetime=self.pool_max_lifetime,
            connect_timeout=self.db_connect_timeout,
            acquire_timeout=self.db_acquire_timeout,
            reaper_interval=self.pool_reaper_interval,
            statement_cache_size=self.db_statement_cache_size,
            ping_on_acquire=self.db_ping_on_acquire,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
