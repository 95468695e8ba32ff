"""Core database package: declarative base, mixins and repository errors."""

from marketplace_realtime.core.database.base import (
    NAMING_CONVENTION,
    Base,
    StringUUIDPKMixin,
)
from marketplace_realtime.core.database.exceptions import NotFoundError, RepositoryError

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "NotFoundError",
    "RepositoryError",
    "StringUUIDPKMixin",
]
