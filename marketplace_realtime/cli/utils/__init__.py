"""CLI utilities for running async operations and formatting output."""

from marketplace_realtime.cli.utils.async_runner import coro
from marketplace_realtime.cli.utils.formatters import (
    error,
    header,
    info,
    success,
    warning,
)

__all__ = [
    "coro",
    "error",
    "header",
    "info",
    "success",
    "warning",
]
