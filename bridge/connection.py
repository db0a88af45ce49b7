"""Connection hub: per-provider consent and session completion.

Flow:
1. /authorize renders the hub for a fresh pending session
2. "Connect <provider>" -> /auth/connect/<provider> -> provider consent
3. /auth/callback/<provider> exchanges the provider code and records the
   credentials in the session, then returns to the hub
4. "Done" -> complete_session() mints the bridge token pair and either
   relays a single-use code to the client or shows the token (manual flow)
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Mapping, Optional

from bridge.callback import build_redirect
from bridge.errors import InvalidRequest
from bridge.minting import TokenPair, TokenSubject, mint_token_pair
from bridge.providers import ProviderAdapter, ProviderKey
from bridge.sessions import PendingAuthorizationSession, PendingSessionStore, ProviderConnectState, RelayFlow
from bridge.stores import AuthorizationCodeStore
from bridge.tokens import generate_code_challenge, generate_code_verifier

logger = logging.getLogger(__name__)


def provider_redirect_uri(server_url: str, provider: ProviderKey) -> str:
    return f"{server_url}/auth/callback/{provider.value}"


def start_provider_connect(session: PendingAuthorizationSession, adapter: ProviderAdapter, server_url: str) -> str:
    """Begin server-side OAuth with one provider and return its authorize URL.

    The bridge uses its own state and verifier here, separate from whatever
    PKCE parameters the calling client sent.
    """
    connect = ProviderConnectState(
        provider=adapter.key,
        state=secrets.token_urlsafe(32),
        code_verifier=generate_code_verifier(),
    )
    session.connecting = connect
    logger.info(f"[CONNECT] Redirecting to {adapter.key.value} for consent")
    return adapter.build_authorize_url(
        redirect_uri=provider_redirect_uri(server_url, adapter.key),
        state=connect.state,
        code_challenge=generate_code_challenge(connect.code_verifier),
        code_challenge_method="S256",
    )


async def complete_provider_connect(
    session: PendingAuthorizationSession,
    adapter: ProviderAdapter,
    code: Optional[str],
    state: Optional[str],
    server_url: str,
) -> None:
    """Exchange the provider's code and record the credentials in the session.

    Raises:
        InvalidRequest: when no consent is in progress for this provider, the
        state does not match or the code is missing.
        ProviderError: when the provider rejects the exchange.
    """
    connect = session.connecting
    if connect is None or connect.provider != adapter.key:
        raise InvalidRequest(f"No {adapter.key.value} connection in progress")
    if not state or not secrets.compare_digest(state, connect.state):
        session.connecting = None
        raise InvalidRequest("Invalid OAuth callback state")
    if not code:
        session.connecting = None
        raise InvalidRequest("No authorization code received")

    record = await adapter.exchange_code(
        code,
        connect.code_verifier,
        redirect_uri=provider_redirect_uri(server_url, adapter.key),
    )
    session.record_provider_tokens(adapter.key, record)


@dataclass(frozen=True)
class CompletedSession:
    """Outcome of "Done": a client redirect (relay) or a token to display."""

    tokens: TokenPair
    providers: list
    redirect_url: Optional[str] = None


def complete_session(
    session: PendingAuthorizationSession,
    sessions: PendingSessionStore,
    code_store: AuthorizationCodeStore,
    adapters: Mapping[ProviderKey, ProviderAdapter],
    server_url: str,
    test_exp: Optional[int] = None,
) -> CompletedSession:
    """Mint the bridge tokens for every connected provider and finish the flow.

    Raises:
        InvalidRequest: when no provider has been connected yet.
    """
    if not session.provider_tokens:
        raise InvalidRequest("No providers connected. Please connect at least one service.")

    records = dict(session.provider_tokens)
    scope = session.scope or " ".join(
        record.scope for record in records.values() if record.scope
    )
    subject = TokenSubject.new(server_url, resource=session.resource, scope=scope)
    rotating = [key for key in records if key in adapters and adapters[key].refresh_token_rotates]
    tokens = mint_token_pair(records, subject, rotating, test_exp=test_exp)
    providers = [key.value for key in records]

    if isinstance(session.flow, RelayFlow) and session.redirect_uri:
        code = code_store.generate()
        code_store.store(
            code,
            tokens.access_token,
            tokens.refresh_token,
            client_id=session.client_id,
            redirect_uri=session.redirect_uri,
            code_challenge=session.flow.code_challenge,
            code_challenge_method=session.flow.code_challenge_method,
        )
        redirect_url = build_redirect(session.redirect_uri, {"code": code, "state": session.state})
        sessions.purge(session.session_id)
        logger.info(f"[CONNECT] Session complete, relaying code to client {session.client_id or '-'}")
        return CompletedSession(tokens, providers, redirect_url)

    sessions.purge(session.session_id)
    logger.info("[CONNECT] Session complete (manual flow), displaying token")
    return CompletedSession(tokens, providers)
