"""Persistence for chat messages.

``MessageRepository`` holds the queries and takes an explicit session.
``SqlMessageStore`` owns the session lifecycle and is what the message
router talks to: each call is one short transaction.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from marketplace_realtime.core.database import NotFoundError, RepositoryError
from marketplace_realtime.features.messaging.models import ChatMessage
from marketplace_realtime.infra.metrics.prometheus import (
    message_store_errors_total,
    message_store_operation_seconds,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class MessageStore(Protocol):
    """Persistence operations the message router depends on."""

    async def create_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        job_id: str | None = None,
    ) -> ChatMessage: ...

    async def mark_message_as_read(self, message_id: str) -> None: ...


class MessageRepository:
    """Queries over the ``messages`` table.

    Session is always explicit; callers own commit/rollback.
    """

    async def create(
        self,
        session: AsyncSession,
        *,
        sender_id: str,
        recipient_id: str,
        content: str,
        job_id: str | None = None,
    ) -> ChatMessage:
        message = ChatMessage(
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content,
            job_id=job_id,
            read=False,
        )
        session.add(message)
        await session.flush()
        await session.refresh(message)
        return message

    async def get(self, session: AsyncSession, message_id: str) -> ChatMessage | None:
        return await session.get(ChatMessage, message_id)

    async def mark_read(self, session: AsyncSession, message_id: str) -> None:
        """Set ``read`` on a message.

        Marking an already-read message is a successful no-op.

        Raises:
            NotFoundError: If no message has ``message_id``.
        """
        result = await session.execute(
            update(ChatMessage).where(ChatMessage.id == message_id).values(read=True)
        )
        if result.rowcount == 0:
            raise NotFoundError("ChatMessage", {"id": message_id})

    async def between_users(
        self,
        session: AsyncSession,
        user1_id: str,
        user2_id: str,
        *,
        limit: int | None = None,
    ) -> Sequence[ChatMessage]:
        """Both directions of a conversation, oldest first."""
        stmt = (
            select(ChatMessage)
            .where(
                or_(
                    and_(ChatMessage.sender_id == user1_id, ChatMessage.recipient_id == user2_id),
                    and_(ChatMessage.sender_id == user2_id, ChatMessage.recipient_id == user1_id),
                )
            )
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def conversations(self, session: AsyncSession, user_id: str) -> list[ChatMessage]:
        """Latest message per conversation partner, newest conversation first."""
        stmt = (
            select(ChatMessage)
            .where(or_(ChatMessage.sender_id == user_id, ChatMessage.recipient_id == user_id))
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        )
        result = await session.execute(stmt)

        latest: dict[str, ChatMessage] = {}
        for message in result.scalars():
            latest.setdefault(message.partner_of(user_id), message)
        return list(latest.values())


class SqlMessageStore:
    """MessageStore backed by an async session factory.

    Every driver/ORM failure is re-raised as RepositoryError with the
    original error chained; NotFoundError passes through unchanged.

    Example:
        store = SqlMessageStore(AsyncSessionLocal)
        message = await store.create_message("u-1", "u-2", "hello")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MessageRepository | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._repository = repository or MessageRepository()

    @asynccontextmanager
    async def _operation(self, name: str, **details: object) -> AsyncIterator[AsyncSession]:
        start = time.perf_counter()
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            message_store_errors_total.labels(operation=name).inc()
            logger.error(
                "Message store operation failed",
                extra={"operation": name, "error": str(e), **details},
            )
            raise RepositoryError(f"{name} failed", details=dict(details)) from e
        finally:
            message_store_operation_seconds.labels(operation=name).observe(
                time.perf_counter() - start
            )

    async def create_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        job_id: str | None = None,
    ) -> ChatMessage:
        async with self._operation(
            "create_message", sender_id=sender_id, recipient_id=recipient_id
        ) as session:
            message = await self._repository.create(
                session,
                sender_id=sender_id,
                recipient_id=recipient_id,
                content=content,
                job_id=job_id,
            )
        logger.debug(
            "Message persisted",
            extra={"message_id": message.id, "sender_id": sender_id, "recipient_id": recipient_id},
        )
        return message

    async def mark_message_as_read(self, message_id: str) -> None:
        async with self._operation("mark_message_as_read", message_id=message_id) as session:
            await self._repository.mark_read(session, message_id)

    async def get_messages_between_users(
        self, user1_id: str, user2_id: str, *, limit: int | None = None
    ) -> list[ChatMessage]:
        async with self._operation(
            "get_messages_between_users", user1_id=user1_id, user2_id=user2_id
        ) as session:
            return list(await self._repository.between_users(session, user1_id, user2_id, limit=limit))

    async def get_conversations(self, user_id: str) -> list[ChatMessage]:
        async with self._operation("get_conversations", user_id=user_id) as session:
            return await self._repository.conversations(session, user_id)


__all__ = ["MessageRepository", "MessageStore", "SqlMessageStore"]
