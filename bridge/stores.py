"""In-memory stores for bridge flows.

Holds the short-lived authorization-code relay entries and the pending
per-browser authorization sessions. Both are process-local and non-durable.
Bridge access and refresh tokens are JWT-based and need no storage.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

# Authorization code expiration (10 minutes per RFC 6749 section 10.5)
CODE_TTL_SECONDS = 10 * 60

# Background sweep interval
SWEEP_INTERVAL_SECONDS = 5 * 60

V = TypeVar("V")


class ExpiringStore(Generic[V]):
    """Key/value map whose entries expire a fixed time after being set.

    Expired entries are invisible to get()/pop() immediately and are
    physically removed by sweep(). pop() is a get-and-delete with no await
    point, so on the event loop exactly one caller can win a given key.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, V]] = {}

    def set(self, key: str, value: V) -> float:
        """Store a value and return its absolute expiry time."""
        expires_at = self._clock() + self.ttl_seconds
        self._entries[key] = (expires_at, value)
        return expires_at

    def get(self, key: str) -> Optional[V]:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() > expires_at:
            del self._entries[key]
            return None
        return value

    def pop(self, key: str) -> Optional[V]:
        item = self._entries.pop(key, None)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() > expires_at:
            return None
        return value

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now > expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class AuthorizationCodeEntry:
    """Token pair minted at connection time, waiting to be redeemed once."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float = 0.0
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class AuthorizationCodeStore:
    """Single-use relay codes mapping to already-minted bridge tokens."""

    def __init__(self, ttl_seconds: float = CODE_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._codes: ExpiringStore[AuthorizationCodeEntry] = ExpiringStore(ttl_seconds, clock)

    @staticmethod
    def generate() -> str:
        """Generate an opaque, cryptographically random authorization code."""
        return secrets.token_urlsafe(32)

    def store(
        self,
        code: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> AuthorizationCodeEntry:
        entry = AuthorizationCodeEntry(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self._clock() + self.ttl_seconds,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        self._codes.set(code, entry)
        logger.info(
            f"[CODES] Stored authorization code (expires in {int(self.ttl_seconds)}s, "
            f"refresh token: {refresh_token is not None})"
        )
        return entry

    def consume(self, code: str) -> Optional[AuthorizationCodeEntry]:
        """Atomically fetch and delete a code. A second call returns None."""
        entry = self._codes.pop(code)
        if entry is None:
            logger.info("[CODES] Authorization code not found or expired")
            return None
        logger.info("[CODES] Authorization code consumed")
        return entry

    def sweep(self) -> int:
        return self._codes.sweep()

    def __len__(self) -> int:
        return len(self._codes)


async def run_sweeper(
    sweepables: Iterable[Callable[[], int]],
    interval: float = SWEEP_INTERVAL_SECONDS,
) -> None:
    """Background task: periodically remove expired codes and sessions."""
    sweepables = list(sweepables)
    while True:
        await asyncio.sleep(interval)
        try:
            removed = sum(sweep() for sweep in sweepables)
            if removed:
                logger.info(f"[CODES] Swept {removed} expired entries")
        except Exception:
            logger.exception("[CODES] Error in sweep task")
