"""Handshake authentication against the HTTP application's session store."""

from marketplace_realtime.features.auth.authenticator import (
    AuthFailure,
    AuthResult,
    SessionAuthenticator,
    extract_session_id,
    identity_from_session,
    sign_session_id,
)
from marketplace_realtime.features.auth.session_store import (
    SessionLookup,
    SqlSessionStore,
    build_session_table,
)

__all__ = [
    "AuthFailure",
    "AuthResult",
    "SessionAuthenticator",
    "SessionLookup",
    "SqlSessionStore",
    "build_session_table",
    "extract_session_id",
    "identity_from_session",
    "sign_session_id",
]
