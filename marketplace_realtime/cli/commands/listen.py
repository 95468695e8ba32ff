"""Attach a reconnecting client to a running server and print its frames."""

import asyncio
import json
import sys
from urllib.parse import quote

import click

from marketplace_realtime.cli.utils import coro, error, info, warning
from marketplace_realtime.core.settings import get_auth_settings


@click.command(name="listen")
@click.argument("url")
@click.option("--session-id", required=True, help="Session cookie value (signed 's:...' or raw sid)")
@click.option("--cookie-name", default=None, help="Cookie name (default: AUTH_SESSION_COOKIE_NAME)")
@click.option("--user-id", default="cli", help="Local label for the signed-in user")
@click.option("--max-reconnects", default=5, type=int, show_default=True)
@coro
async def listen(
    url: str,
    session_id: str,
    cookie_name: str | None,
    user_id: str,
    max_reconnects: int,
) -> None:
    """Connect to URL (e.g. ws://localhost:8000/ws) and print every inbound frame as JSON."""
    from marketplace_realtime.client import ConnectionState, RealtimeClient

    name = cookie_name or get_auth_settings().session_cookie_name
    client = RealtimeClient(
        url,
        user_id=user_id,
        cookie=f"{name}={quote(session_id, safe='')}",
        on_frame=lambda frame: click.echo(
            json.dumps(frame.model_dump(mode="json", by_alias=True))
        ),
        max_reconnect_attempts=max_reconnects,
    )
    client.start()
    info(f"Connecting to {url}")
    try:
        await client.task
    except asyncio.CancelledError:
        warning("Interrupted")
        await client.close()
        return
    lost = client.state is ConnectionState.DISCONNECTED
    await client.close()
    if lost:
        error("Connection lost")
        sys.exit(1)
