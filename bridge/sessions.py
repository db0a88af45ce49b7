"""Pending authorization sessions.

One PendingAuthorizationSession exists per browser session between /authorize
and the relay of a code back to the calling client. It is keyed by an opaque
id kept in the bridge_session cookie and never shared across sessions.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from bridge.providers import ProviderKey, ProviderTokenRecord
from bridge.stores import ExpiringStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "bridge_session"


@dataclass(frozen=True)
class RelayFlow:
    """The calling client supplied its own PKCE challenge.

    The bridge never holds the verifier, so it can only relay a code back.
    """

    code_challenge: str
    code_challenge_method: str = "S256"


@dataclass(frozen=True)
class DirectExchangeFlow:
    """No client challenge: the bridge generated and retains the verifier."""

    code_verifier: str


FlowSelector = Union[RelayFlow, DirectExchangeFlow]


@dataclass
class ProviderConnectState:
    """In-progress server-side consent with one provider."""

    provider: ProviderKey
    state: str
    code_verifier: str


@dataclass
class PendingAuthorizationSession:
    session_id: str
    flow: FlowSelector
    state: Optional[str] = None
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None
    resource: Optional[str] = None
    provider_tokens: dict[ProviderKey, ProviderTokenRecord] = field(default_factory=dict)
    connecting: Optional[ProviderConnectState] = None

    @property
    def using_own_pkce(self) -> bool:
        return isinstance(self.flow, DirectExchangeFlow)

    @property
    def code_verifier(self) -> Optional[str]:
        return self.flow.code_verifier if isinstance(self.flow, DirectExchangeFlow) else None

    @property
    def connected_providers(self) -> list[ProviderKey]:
        return list(self.provider_tokens)

    def record_provider_tokens(self, provider: ProviderKey, record: ProviderTokenRecord) -> None:
        """Accumulate the credentials from one provider's completed consent."""
        self.provider_tokens[provider] = record
        self.connecting = None
        logger.info(
            f"[CONNECT] {provider.value} connected "
            f"({len(self.provider_tokens)} provider(s) in session)"
        )


class PendingSessionStore:
    """Process-local map of session id to pending authorization session."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self._sessions: ExpiringStore[PendingAuthorizationSession] = ExpiringStore(ttl_seconds, clock)

    def start(self, flow: FlowSelector, **fields) -> PendingAuthorizationSession:
        """Create a fresh session under a new random id."""
        session = PendingAuthorizationSession(session_id=secrets.token_urlsafe(32), flow=flow, **fields)
        self._sessions.set(session.session_id, session)
        return session

    def get(self, session_id: Optional[str]) -> Optional[PendingAuthorizationSession]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def purge(self, session_id: str) -> None:
        """Forget every pending-flow field of a session."""
        if self._sessions.delete(session_id):
            logger.info("[CONNECT] Pending session cleared")

    def sweep(self) -> int:
        return self._sessions.sweep()

    def __len__(self) -> int:
        return len(self._sessions)
