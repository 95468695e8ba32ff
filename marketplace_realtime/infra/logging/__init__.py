"""Logging infrastructure: queue-based handlers, JSONL output and log context."""

from marketplace_realtime.infra.logging.config import (
    complete,
    configure_logging,
    setup_logging,
    shutdown,
)
from marketplace_realtime.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from marketplace_realtime.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "complete",
    "configure_logging",
    "get_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
