"""CLI command modules."""

from marketplace_realtime.cli.commands import database, listen, messages, server

__all__ = [
    "database",
    "listen",
    "messages",
    "server",
]
