"""Declarative base and mixins for SQLAlchemy models.

Models compose capabilities by inheriting from specific mixins:

    class ChatMessage(Base, StringUUIDPKMixin):
        __tablename__ = "messages"
        content: Mapped[str] = mapped_column(Text)
"""

from __future__ import annotations

import uuid

from sqlalchemy import MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Consistent naming convention for database constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base with a shared, convention-named metadata registry."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class StringUUIDPKMixin:
    """UUID primary key stored as a string column.

    The HTTP application generates ids with ``gen_random_uuid()`` into a
    varchar column, so ids are kept as strings end to end.
    """

    __allow_unmapped__ = True

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
