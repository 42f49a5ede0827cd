"""
Utilities package for the pooled SQL engine.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of pool or driver logic.
"""

from pooled_sql.utils.logging import ConsoleFormatter, JsonFormatter, configure_logging, get_logger

__all__ = [
    "ConsoleFormatter",
    "JsonFormatter",
    "configure_logging",
    "get_logger",
]
