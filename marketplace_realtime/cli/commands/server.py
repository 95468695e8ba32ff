"""Server command."""

import click
import uvicorn

from marketplace_realtime.cli.utils import info
from marketplace_realtime.core.settings import get_app_settings, get_websocket_settings


@click.command(name="serve")
@click.option("--host", default=None, help="Host to bind (default: APP_HOST)")
@click.option("--port", default=None, type=int, help="Port to bind (default: APP_PORT)")
@click.option("--reload/--no-reload", default=False, help="Enable auto-reload on code changes")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["critical", "error", "warning", "info", "debug", "trace"]),
    help="Uvicorn log level",
)
def serve(host: str | None, port: int | None, reload: bool, log_level: str) -> None:
    """Run the realtime messaging server.

    A single worker is used: the connection registry is process-local and
    cross-process delivery needs REDIS_URL.
    """
    settings = get_app_settings()
    ws_settings = get_websocket_settings()
    host = host or settings.host
    port = port or settings.port

    info(f"Server will run at: http://{host}:{port}")
    info(f"WebSocket endpoint: ws://{host}:{port}{ws_settings.path}")
    info(f"Environment: {settings.environment}")

    uvicorn.run(
        "marketplace_realtime.app.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
        ws_max_size=ws_settings.max_message_size,
    )
