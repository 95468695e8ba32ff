"""Session-cookie authentication for the WebSocket handshake.

The upgrade request carries the same session cookie the HTTP application
issues. Its value is either a bare session id or an express-style signed
value, ``s:<sid>.<signature>`` (URL-encoded), where the signature is the
unpadded base64 HMAC-SHA256 of ``<sid>`` under the session secret.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from starlette.requests import cookie_parser

from marketplace_realtime.core.settings import get_auth_settings, get_websocket_settings

if TYPE_CHECKING:
    from starlette.requests import HTTPConnection

    from marketplace_realtime.core.settings import AuthSettings
    from marketplace_realtime.features.auth.session_store import SessionLookup

logger = logging.getLogger(__name__)

SIGNED_PREFIX = "s:"


class AuthFailure(str, Enum):
    """Why a handshake was not authenticated."""

    NO_COOKIE = "no_cookie"
    BAD_SIGNATURE = "bad_signature"
    NO_SESSION = "no_session"
    NO_IDENTITY = "no_identity"
    TIMEOUT = "timeout"
    STORE_ERROR = "store_error"


@dataclass(frozen=True, slots=True)
class AuthResult:
    user_id: str | None
    failure: AuthFailure | None = None

    @property
    def ok(self) -> bool:
        return self.user_id is not None


def sign_session_id(session_id: str, secret: str) -> str:
    """Signature part of an express signed cookie for ``session_id``."""
    digest = hmac.new(secret.encode(), session_id.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode().rstrip("=")


def extract_session_id(raw_value: str, secret: str | None = None) -> str | None:
    """Recover the session store key from a raw cookie value.

    Without ``secret`` the signing prefix and signature are stripped and
    not checked. With ``secret`` only a correctly signed value is accepted.
    """
    value = unquote(raw_value).strip()
    if not value:
        return None

    if not value.startswith(SIGNED_PREFIX):
        # express-session ignores unsigned cookies once a secret is in use
        return None if secret else value

    session_id, dot, signature = value[len(SIGNED_PREFIX):].rpartition(".")
    if not dot or not session_id:
        return None
    if secret is not None and not hmac.compare_digest(
        sign_session_id(session_id, secret), signature
    ):
        return None
    return session_id


def identity_from_session(session: dict[str, Any], identity_key: str = "passport") -> str | None:
    """Read ``session[identity_key]["user"]`` as a string user id."""
    holder = session.get(identity_key)
    if not isinstance(holder, dict):
        return None
    user = holder.get("user")
    if user is None or isinstance(user, dict | list) or user == "":
        return None
    return str(user)


class SessionAuthenticator:
    """Resolves a handshake's cookie header to a user id.

    Never raises: store errors and timeouts are logged and reported as
    failures.

    Example:
        authenticator = SessionAuthenticator(SqlSessionStore(AsyncSessionLocal))
        user_id = await authenticator.authenticate(websocket.headers.get("cookie"))
    """

    def __init__(
        self,
        store: SessionLookup,
        settings: AuthSettings | None = None,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_auth_settings()
        self._timeout = timeout if timeout is not None else get_websocket_settings().auth_timeout
        self._secret = (
            self._settings.session_secret.get_secret_value()
            if self._settings.verify_signature and self._settings.session_secret
            else None
        )

    @property
    def verifies_signature(self) -> bool:
        return self._secret is not None

    async def authenticate(self, cookie_header: str | None) -> str | None:
        """Return the authenticated user id, or None."""
        return (await self.resolve(cookie_header)).user_id

    async def authenticate_connection(self, connection: HTTPConnection) -> AuthResult:
        """Authenticate a Starlette request or WebSocket by its cookie header."""
        return await self.resolve(connection.headers.get("cookie"))

    async def resolve(self, cookie_header: str | None) -> AuthResult:
        cookies = cookie_parser(cookie_header or "")
        raw_value = cookies.get(self._settings.session_cookie_name)
        if not raw_value:
            return AuthResult(None, AuthFailure.NO_COOKIE)

        session_id = extract_session_id(raw_value, self._secret)
        if session_id is None:
            logger.warning(
                "Session cookie rejected",
                extra={"cookie_name": self._settings.session_cookie_name},
            )
            return AuthResult(None, AuthFailure.BAD_SIGNATURE)

        try:
            session = await asyncio.wait_for(
                self._store.get_session_by_id(session_id), self._timeout
            )
        except TimeoutError:
            logger.warning("Session lookup timed out", extra={"timeout": self._timeout})
            return AuthResult(None, AuthFailure.TIMEOUT)
        except Exception:
            logger.exception("Session lookup failed")
            return AuthResult(None, AuthFailure.STORE_ERROR)

        if session is None:
            return AuthResult(None, AuthFailure.NO_SESSION)

        user_id = identity_from_session(session, self._settings.session_identity_key)
        if user_id is None:
            return AuthResult(None, AuthFailure.NO_IDENTITY)
        return AuthResult(user_id)


__all__ = [
    "AuthFailure",
    "AuthResult",
    "SessionAuthenticator",
    "extract_session_id",
    "identity_from_session",
    "sign_session_id",
]
