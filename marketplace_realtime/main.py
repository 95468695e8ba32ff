"""Main entry point for marketplace-realtime.

- ``--server``: run the FastAPI server with settings from the environment
- anything else: run the CLI
"""

from __future__ import annotations

import sys
from typing import NoReturn


def run_fastapi_server() -> NoReturn:
    """Run the application under uvicorn."""
    import uvicorn

    from marketplace_realtime.core.settings import (
        get_app_settings,
        get_logging_settings,
        get_websocket_settings,
    )

    settings = get_app_settings()
    log_settings = get_logging_settings()

    uvicorn.run(
        "marketplace_realtime.app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        access_log=settings.debug,
        log_level=log_settings.level.lower(),
        ws_max_size=get_websocket_settings().max_message_size,
    )
    sys.exit(0)


def main() -> NoReturn:
    if "--server" in sys.argv:
        sys.argv.remove("--server")
        run_fastapi_server()

    from marketplace_realtime.cli.main import main as cli_main

    cli_main()
    sys.exit(0)


if __name__ == "__main__":
    main()
