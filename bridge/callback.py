"""Upstream callback (/callback).

AWAITING_CALLBACK -> RELAYED:  client-supplied PKCE, code present, state
                               acceptable -> 302 back to the client with the code.
AWAITING_CALLBACK -> REJECTED: anything else -> 400, session purged.

The direct-exchange path (server-held verifier) completes through the
connection hub, never here.
"""

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from bridge.errors import InvalidRequest
from bridge.sessions import PendingAuthorizationSession, PendingSessionStore

logger = logging.getLogger(__name__)


def build_redirect(redirect_uri: str, params: dict) -> str:
    """Append query parameters to a client redirect URI."""
    params = {key: value for key, value in params.items() if value}
    separator = "&" if "?" in redirect_uri else "?"
    return f"{redirect_uri}{separator}{urlencode(params)}"


def _state_acceptable(session: PendingAuthorizationSession, state: Optional[str]) -> bool:
    if session.using_own_pkce:
        # Only a matching state protects this path against CSRF
        return bool(state) and bool(session.state) and secrets.compare_digest(state, session.state)
    # The client's verifier is the real boundary here; state may be omitted,
    # but a state that is present must still match
    if not state:
        return True
    return bool(session.state) and secrets.compare_digest(state, session.state)


def handle_callback(
    sessions: PendingSessionStore,
    session: Optional[PendingAuthorizationSession],
    code: Optional[str],
    state: Optional[str],
) -> str:
    """Validate the upstream result and return the client redirect URL.

    Raises:
        InvalidRequest: on a missing code or session, a state mismatch, a
        missing redirect URI or a server-held-verifier session. The pending
        session is purged first.
    """
    if session is None:
        logger.warning("[CALLBACK] No pending authorization session")
        raise InvalidRequest("No pending authorization for this browser session")

    reason = None
    if not code:
        reason = "Missing authorization code"
    elif not _state_acceptable(session, state):
        reason = "Invalid OAuth callback state"
    elif session.using_own_pkce:
        reason = "Invalid PKCE configuration for callback relay"
    elif not session.redirect_uri:
        reason = "Missing redirect URI"

    if reason:
        logger.warning(
            f"[CALLBACK] Rejected: {reason} (code: {'present' if code else 'missing'}, "
            f"client PKCE: {not session.using_own_pkce})"
        )
        sessions.purge(session.session_id)
        raise InvalidRequest(reason)

    redirect_url = build_redirect(session.redirect_uri, {"code": code, "state": session.state or state})
    sessions.purge(session.session_id)
    logger.info("[CALLBACK] Relaying authorization code to client")
    return redirect_url
