"""
Structured logging module.

Provides JSON/console logging with context propagation across asyncio tasks.
"""

from core.logging.context import clear_log_context, get_log_context, set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import get_logger, setup_logging
from core.logging.utilities import log_exception, log_with_context

__all__ = [
    "ConsoleFormatter",
    "JSONFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "log_exception",
    "log_with_context",
    "set_log_context",
    "setup_logging",
]
