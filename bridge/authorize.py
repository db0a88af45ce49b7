"""Authorization flow start (/authorize).

Decides between the two completion paths:
- the client sent its own PKCE challenge: adopt it verbatim, keep no
  verifier, and relay a code back when the connection completes (RelayFlow);
- no challenge: generate an S256 pair and keep the verifier, so the bridge
  can complete the exchange itself (DirectExchangeFlow).
"""

import logging
from typing import Optional

from bridge.errors import InvalidRequest
from bridge.sessions import DirectExchangeFlow, FlowSelector, PendingAuthorizationSession, PendingSessionStore, RelayFlow
from bridge.tokens import generate_code_verifier

logger = logging.getLogger(__name__)


def select_flow(code_challenge: Optional[str], code_challenge_method: Optional[str]) -> FlowSelector:
    if code_challenge:
        method = code_challenge_method or "S256"
        if method != "S256":
            raise InvalidRequest(f"Unsupported code_challenge_method: {method}")
        return RelayFlow(code_challenge=code_challenge, code_challenge_method=method)
    if code_challenge_method:
        raise InvalidRequest("code_challenge_method given without code_challenge")
    return DirectExchangeFlow(code_verifier=generate_code_verifier())


def begin_authorization(
    sessions: PendingSessionStore,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
    resource: Optional[str] = None,
) -> PendingAuthorizationSession:
    """Persist a pending authorization session for the connection hub.

    Raises:
        InvalidRequest: for an unsupported PKCE method.
    """
    flow = select_flow(code_challenge, code_challenge_method)
    session = sessions.start(
        flow,
        state=state or None,
        client_id=client_id or None,
        redirect_uri=redirect_uri or None,
        scope=scope or None,
        resource=resource or None,
    )
    logger.info(
        f"[AUTHORIZE] Flow started for client {client_id or '-'}: "
        f"{'server-generated PKCE' if session.using_own_pkce else 'client PKCE (relay)'}, "
        f"state: {'present' if state else 'none'}, resource: {resource or '-'}"
    )
    return session
