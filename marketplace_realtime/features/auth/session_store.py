"""Read-only access to the HTTP application's session table.

The table is the ``connect-pg-simple`` layout::

    session(sid varchar primary key, sess json not null, expire timestamp not null)

``expire`` is stored without a time zone and is interpreted as UTC.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import JSON, Column, DateTime, Index, MetaData, String, Table, select

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class SessionLookup(Protocol):
    """Resolves a session id to its decoded session data."""

    async def get_session_by_id(self, session_id: str) -> dict[str, Any] | None: ...


def build_session_table(name: str = "session", metadata: MetaData | None = None) -> Table:
    """Describe the session table; it is owned by the HTTP application."""
    return Table(
        name,
        metadata if metadata is not None else MetaData(),
        Column("sid", String(), primary_key=True),
        Column("sess", JSON(), nullable=False),
        Column("expire", DateTime(timezone=False), nullable=False),
        Index(f"IDX_{name}_expire", "expire"),
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SqlSessionStore:
    """SessionLookup over the shared SQL session table.

    Expired rows are treated as absent; pruning them is the session
    middleware's job.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        table_name: str = "session",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._table = build_session_table(table_name)
        self._clock = clock

    @property
    def table(self) -> Table:
        return self._table

    async def get_session_by_id(self, session_id: str) -> dict[str, Any] | None:
        stmt = select(self._table.c.sess, self._table.c.expire).where(
            self._table.c.sid == session_id
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).first()

        if row is None:
            return None

        expire = row.expire
        if expire.tzinfo is None:
            expire = expire.replace(tzinfo=UTC)
        if expire <= self._clock():
            logger.debug("Session expired", extra={"expired_at": expire.isoformat()})
            return None

        data = json.loads(row.sess) if isinstance(row.sess, str | bytes) else row.sess
        return data if isinstance(data, dict) else None

    async def create_table(self, engine: AsyncEngine) -> None:
        """Create the session table if missing (local development and tests)."""
        async with engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: self._table.create(sync_conn, checkfirst=True))


__all__ = ["SessionLookup", "SqlSessionStore", "build_session_table"]
