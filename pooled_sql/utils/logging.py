"""
Structured logging for the pooled SQL engine.

The pool, executor and transactions log lifecycle events (connection opened,
retired with a reason, reaped, lease ignored, rollback failed) with context
passed through ``extra=`` such as ``conn_id``, ``reason`` and ``sql``. Both
formatters keep that context: the console formatter appends it as
``key=value`` pairs, the JSON formatter promotes it to top-level fields.

Usage:
    from pooled_sql.utils.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", json_logs=False)
    log = get_logger(__name__)
    log.info("connection opened", extra={"conn_id": 3})
    # 2024-05-01 12:00:00 | INFO | pooled_sql.pool | connection opened [conn_id=3]
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields attached to a record through `extra=`, in insertion order."""
    context = {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and key != "extra"
    }
    # Older call sites pass a single nested dict as extra={"extra": {...}}.
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        context.update(nested)
    return context


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as JSON string."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    payload.update(_record_context(record))
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines with the record's `extra=` context appended."""

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802 - logging API name
        line = super().formatMessage(record)
        context = _record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{line} [{pairs}]"


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Configure root logging.

    Parameters
    ----------
    level : str
        Logging level name. DEBUG shows every connection open and retirement;
        INFO keeps pool open/close and retries; WARNING keeps ignored releases,
        abandoned cursors and failed commits.
    json_logs : bool
        Emit one JSON object per record instead of console lines.
    force : bool
        Replace handlers configured earlier (the CLI does); when False an
        application that already configured logging is left alone.
    """
    if not force and logging.getLogger().handlers:
        return

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "()": ConsoleFormatter,
                    "fmt": CONSOLE_FORMAT,
                    "datefmt": CONSOLE_DATEFMT,
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "root": {"handlers": ["default"], "level": level},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with the given name. If name is None, returns the root logger.
    """
    return logging.getLogger(name)


__all__ = ["ConsoleFormatter", "JsonFormatter", "configure_logging", "get_logger"]
