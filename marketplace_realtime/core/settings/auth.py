"""Session authentication settings for the WebSocket handshake."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """Settings describing the HTTP application's session layout.

    Environment variables use AUTH_ prefix.
    Example: AUTH_SESSION_COOKIE_NAME=connect.sid

    The handshake reads the same cookie and session table that the HTTP
    application's session middleware writes.
    """

    session_cookie_name: str = Field(
        default="connect.sid",
        min_length=1,
        description="Name of the session id cookie",
    )

    session_table: str = Field(
        default="session",
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
        description="Table holding serialized sessions (sid, sess, expire)",
    )

    session_identity_key: str = Field(
        default="passport",
        min_length=1,
        description="Key inside the serialized session that holds the auth framework state",
    )

    session_secret: SecretStr | None = Field(
        default=None,
        description="Cookie signing secret. When set, signed cookies are verified.",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @property
    def verify_signature(self) -> bool:
        """Whether cookie signatures are checked before the store lookup."""
        return self.session_secret is not None and bool(self.session_secret.get_secret_value())
