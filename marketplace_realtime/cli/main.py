"""Main CLI entry point for marketplace-realtime management commands."""

import click

from marketplace_realtime.cli.commands import database, listen, messages, server
from marketplace_realtime.infra.logging import setup_logging


@click.group()
@click.version_option(version="1.0.0", prog_name="marketplace-realtime")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Marketplace realtime messaging service.

    \b
    Commands:
      serve      Run the HTTP/WebSocket server
      db         Database connectivity and table creation
      messages   Inspect stored conversations
      listen     Attach a reconnecting client and print frames

    \b
    Quick Start:
      marketplace-realtime db create-tables
      marketplace-realtime serve --reload
      marketplace-realtime listen ws://localhost:8000/ws --session-id 's:abc.sig'
    """
    ctx.ensure_object(dict)


cli.add_command(server.serve)
cli.add_command(database.db)
cli.add_command(messages.messages)
cli.add_command(listen.listen)


def main() -> None:
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
