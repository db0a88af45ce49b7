"""Bridge token minting.

Access token claims:  {sub, iss, aud, scope, exp, iat,
                       providers: {<key>: {access_token, refresh_token, expires_at, scope}}}
Refresh token claims: {type: "refresh_token", sub, iss, aud, scope, exp, iat,
                       providers: {<key>: {refresh_token}}}

An access token never outlives the shortest-lived provider credential it
embeds.
"""

import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional

from bridge.providers import ProviderKey, ProviderTokenRecord
from bridge.tokens import REFRESH_TOKEN_TYPE, describe_token, peek_expiration, sign_token

logger = logging.getLogger(__name__)

ACCESS_TOKEN_BUFFER_SECONDS = 60
DEFAULT_ACCESS_TOKEN_SECONDS = 60 * 60
DEFAULT_REFRESH_TOKEN_SECONDS = 90 * 24 * 60 * 60

ProviderRecords = Mapping[ProviderKey, ProviderTokenRecord]


@dataclass(frozen=True)
class TokenSubject:
    """Identity claims carried unchanged from one token generation to the next."""

    sub: str
    iss: str
    aud: str
    scope: str

    @classmethod
    def new(cls, issuer: str, resource: Optional[str] = None, scope: str = "") -> "TokenSubject":
        return cls(sub=f"user-{uuid.uuid4()}", iss=issuer, aud=resource or issuer, scope=scope)

    @classmethod
    def from_claims(cls, claims: dict) -> "TokenSubject":
        return cls(
            sub=claims["sub"],
            iss=claims.get("iss", ""),
            aud=claims.get("aud", ""),
            scope=claims.get("scope", ""),
        )

    def claims(self) -> dict:
        return {"sub": self.sub, "iss": self.iss, "aud": self.aud, "scope": self.scope}


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    access_expires_at: int
    refresh_token: str
    refresh_expires_at: int
    scope: str

    def to_response(self, now: Optional[float] = None) -> dict:
        """OAuth token response; expires_in derives from the minted exp."""
        now = int(now if now is not None else time.time())
        return {
            "access_token": self.access_token,
            "token_type": "Bearer",
            "expires_in": max(0, self.access_expires_at - now),
            "refresh_token": self.refresh_token,
            "scope": self.scope,
        }


def access_token_expiration(records: ProviderRecords, now: int, test_exp: Optional[int] = None) -> int:
    """min(provider expirations) minus the safety buffer, or the test-mode override."""
    if test_exp is not None:
        logger.info(f"[TOKEN] TEST MODE: access token expires in {test_exp}s")
        return now + test_exp
    expirations = [record.expires_at for record in records.values() if record.expires_at]
    if not expirations:
        return now + DEFAULT_ACCESS_TOKEN_SECONDS
    exp = min(expirations) - ACCESS_TOKEN_BUFFER_SECONDS
    if exp <= now:
        logger.warning(
            f"[TOKEN] Shortest provider credential expires within {ACCESS_TOKEN_BUFFER_SECONDS}s; "
            f"access token is already expired at issuance"
        )
    return exp


def expiring_providers(records: ProviderRecords, now: int) -> list[ProviderKey]:
    """Providers whose credential expires inside the access token safety buffer."""
    return [
        key for key, record in records.items()
        if record.expires_at and record.expires_at - ACCESS_TOKEN_BUFFER_SECONDS <= now
    ]


def refresh_token_expiration(records: ProviderRecords, rotating: Iterable[ProviderKey], now: int) -> int:
    """Borrow exp from rotating providers' own refresh credentials when readable.

    Decoding is best effort: the 90-day fallback is authoritative whenever no
    rotating provider's refresh token is a decodable JWT.
    """
    rotating = set(rotating)
    borrowed = []
    for key, record in records.items():
        if key in rotating and record.refresh_token:
            exp = peek_expiration(record.refresh_token)
            if exp is not None and exp > now:
                borrowed.append(exp)
    if borrowed:
        return min(borrowed)
    return now + DEFAULT_REFRESH_TOKEN_SECONDS


def mint_access_token(
    records: ProviderRecords, subject: TokenSubject, now: int, test_exp: Optional[int] = None
) -> tuple[str, int]:
    exp = access_token_expiration(records, now, test_exp)
    claims = subject.claims()
    claims.update({
        "exp": exp,
        "iat": now,
        "providers": {key.value: record.to_claims() for key, record in records.items()},
    })
    return sign_token(claims), exp


def mint_refresh_token(
    records: ProviderRecords, subject: TokenSubject, rotating: Iterable[ProviderKey], now: int
) -> tuple[str, int]:
    exp = refresh_token_expiration(records, rotating, now)
    claims = subject.claims()
    claims.update({
        "type": REFRESH_TOKEN_TYPE,
        "exp": exp,
        "iat": now,
        "providers": {
            key.value: {"refresh_token": record.refresh_token}
            for key, record in records.items()
            if record.refresh_token
        },
    })
    return sign_token(claims), exp


def mint_token_pair(
    records: ProviderRecords,
    subject: TokenSubject,
    rotating: Iterable[ProviderKey],
    test_exp: Optional[int] = None,
    now: Optional[float] = None,
    access_scope: Optional[str] = None,
) -> TokenPair:
    """Mint a matching access + refresh token pair for a set of provider credentials.

    ``access_scope`` narrows the access token only; the refresh token keeps
    the subject's full scope.
    """
    if not records:
        raise ValueError("cannot mint a bridge token without provider credentials")
    now = int(now if now is not None else time.time())
    access_subject = subject if access_scope is None else replace(subject, scope=access_scope)
    access_token, access_exp = mint_access_token(records, access_subject, now, test_exp)
    refresh_token, refresh_exp = mint_refresh_token(records, subject, rotating, now)
    logger.info(
        f"[TOKEN] Minted token pair for {subject.sub} "
        f"(providers: {', '.join(key.value for key in records)}; "
        f"access: {describe_token(access_token)})"
    )
    return TokenPair(access_token, access_exp, refresh_token, refresh_exp, access_subject.scope)


def providers_from_claims(claims: dict) -> dict[ProviderKey, ProviderTokenRecord]:
    """Decode the embedded provider blocks of an access token. Unknown keys are ignored."""
    blocks = claims.get("providers") or {}
    records = {}
    for name, block in blocks.items():
        key = ProviderKey.parse(name)
        if key is not None and isinstance(block, dict):
            records[key] = ProviderTokenRecord.from_claims(block)
    return records


def refresh_credentials_from_claims(claims: dict) -> dict[ProviderKey, str]:
    """Decode the non-empty provider refresh tokens of a refresh token."""
    blocks = claims.get("providers") or {}
    credentials = {}
    for name, block in blocks.items():
        key = ProviderKey.parse(name)
        if key is not None and isinstance(block, dict) and block.get("refresh_token"):
            credentials[key] = block["refresh_token"]
    return credentials
