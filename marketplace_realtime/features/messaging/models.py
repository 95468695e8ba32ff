"""SQLAlchemy model for direct chat messages."""
from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from marketplace_realtime.core.database import Base, StringUUIDPKMixin


class ChatMessage(Base, StringUUIDPKMixin):
    """A direct message between two users, optionally tied to a job.

    Column names match the camelCase table the HTTP application already owns.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_sender_recipient", "senderId", "recipientId"),
        Index("ix_messages_recipient_sender", "recipientId", "senderId"),
    )

    sender_id: Mapped[str] = mapped_column("senderId", String(), nullable=False)
    recipient_id: Mapped[str] = mapped_column("recipientId", String(), nullable=False)
    job_id: Mapped[str | None] = mapped_column("jobId", String(), nullable=True)
    content: Mapped[str] = mapped_column(Text(), nullable=False)
    read: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        "createdAt",
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
    )

    def partner_of(self, user_id: str) -> str:
        """The other participant, from ``user_id``'s point of view."""
        return self.recipient_id if self.sender_id == user_id else self.sender_id

    def __repr__(self) -> str:
        return (
            f"ChatMessage(id={self.id!r}, sender_id={self.sender_id!r}, "
            f"recipient_id={self.recipient_id!r}, read={self.read!r})"
        )
