"""Read-only views over the message store."""

import json
import sys

import click

from marketplace_realtime.cli.utils import coro, error, header


def _get_store():
    from marketplace_realtime.features.messaging import SqlMessageStore
    from marketplace_realtime.infra.database import AsyncSessionLocal

    return SqlMessageStore(AsyncSessionLocal)


def _row(message) -> dict:
    from marketplace_realtime.features.messaging.schemas import MessagePayload

    return MessagePayload.model_validate(message).model_dump(mode="json", by_alias=True)


@click.group(name="messages")
def messages() -> None:
    """Inspect stored direct messages."""


@messages.command()
@click.argument("user_a")
@click.argument("user_b")
@click.option("--limit", default=50, type=int, help="Maximum number of messages")
@click.option("--json", "as_json", is_flag=True, help="Print JSON lines")
@coro
async def history(user_a: str, user_b: str, limit: int, as_json: bool) -> None:
    """Show the conversation between USER_A and USER_B, oldest first."""
    from marketplace_realtime.core.database import RepositoryError
    from marketplace_realtime.infra.database import close_database

    try:
        rows = await _get_store().get_messages_between_users(user_a, user_b, limit=limit)
    except RepositoryError as e:
        error(str(e))
        sys.exit(1)
    finally:
        await close_database()

    if as_json:
        for message in rows:
            click.echo(json.dumps(_row(message)))
        return

    header(f"{user_a} ↔ {user_b} ({len(rows)} messages)")
    for message in rows:
        flag = " " if message.read else "*"
        click.echo(f"{flag} {message.created_at:%Y-%m-%d %H:%M:%S} {message.sender_id}: {message.content}")


@messages.command()
@click.argument("user_id")
@click.option("--json", "as_json", is_flag=True, help="Print JSON lines")
@coro
async def conversations(user_id: str, as_json: bool) -> None:
    """List USER_ID's conversation partners with the latest message of each."""
    from marketplace_realtime.core.database import RepositoryError
    from marketplace_realtime.infra.database import close_database

    try:
        rows = await _get_store().get_conversations(user_id)
    except RepositoryError as e:
        error(str(e))
        sys.exit(1)
    finally:
        await close_database()

    if as_json:
        for message in rows:
            click.echo(json.dumps(_row(message)))
        return

    header(f"Conversations for {user_id}")
    for message in rows:
        partner = message.partner_of(user_id)
        click.echo(f"{partner:<36}  {message.created_at:%Y-%m-%d %H:%M}  {message.content[:60]}")
