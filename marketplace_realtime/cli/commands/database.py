"""Database management commands.

Example:bash
    # Check the configured database is reachable
    marketplace-realtime db check

    # Create the messages and session tables (development / sqlite)
    marketplace-realtime db create-tables
"""

import sys

import click

from marketplace_realtime.cli.utils import coro, error, info, success


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command()
@coro
async def check() -> None:
    """Test the database connection."""
    from sqlalchemy.exc import SQLAlchemyError

    from marketplace_realtime.infra.database import close_database, init_database

    info("Testing database connection...")
    try:
        await init_database()
    except (SQLAlchemyError, OSError) as e:
        error(f"Database connection failed: {e}")
        sys.exit(1)
    finally:
        await close_database()
    success("Database connection successful")


@db.command(name="create-tables")
@click.option(
    "--with-session-table/--without-session-table",
    default=True,
    help="Also create the session table the HTTP login flow writes to",
)
@coro
async def create_tables(with_session_table: bool) -> None:
    """Create the messages table (and optionally the session table) if missing."""
    from sqlalchemy.exc import SQLAlchemyError

    from marketplace_realtime.core.settings import get_auth_settings
    from marketplace_realtime.features.auth import SqlSessionStore
    from marketplace_realtime.infra.database import (
        AsyncSessionLocal,
        close_database,
        engine,
    )
    from marketplace_realtime.infra.database import create_tables as create_orm_tables

    try:
        await create_orm_tables()
        if with_session_table:
            store = SqlSessionStore(
                AsyncSessionLocal, table_name=get_auth_settings().session_table,
            )
            await store.create_table(engine)
    except SQLAlchemyError as e:
        error(f"Failed to create tables: {e}")
        sys.exit(1)
    finally:
        await close_database()
    success("Tables created")
