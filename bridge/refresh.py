"""refresh_token grant.

Multi-provider behavior:
- every provider embedded with a refresh credential is refreshed; providers
  absent from the token are skipped;
- the calls run concurrently and ALL of them settle before anything is
  decided;
- if any provider fails the whole refresh fails with invalid_grant and no
  refreshed credential from any provider is returned;
- a non-rotating provider that omits a refresh token keeps the previous one;
- an optional scope may narrow the new access token, never widen it.
"""

import asyncio
import logging
import time
from typing import Mapping, Optional

from bridge.errors import InvalidGrant, InvalidRequest, InvalidScope, ProviderError
from bridge.minting import TokenSubject, expiring_providers, mint_token_pair, refresh_credentials_from_claims
from bridge.providers import ProviderAdapter, ProviderKey, ProviderTokenRecord, merge_refreshed_record
from bridge.tokens import describe_token, verify_refresh_token

logger = logging.getLogger(__name__)


async def _refresh_one(
    adapters: Mapping[ProviderKey, ProviderAdapter], key: ProviderKey, refresh_token: str
) -> ProviderTokenRecord:
    adapter = adapters.get(key)
    if adapter is None:
        raise ProviderError(key.value, f"{key.value} is not configured on this server", retryable=False)
    fresh = await adapter.refresh_access_token(refresh_token)
    return merge_refreshed_record(refresh_token, fresh, adapter.refresh_token_rotates)


def narrow_scope(granted: str, requested: Optional[str]) -> Optional[str]:
    """Validate a refresh request's scope against the scope originally granted.

    Returns None when no scope was requested. A request may drop scopes but
    never add one.
    """
    if not requested or not requested.strip():
        return None
    granted_scopes = set(granted.split())
    requested_scopes = requested.split()
    extra = [scope for scope in requested_scopes if scope not in granted_scopes]
    if extra:
        raise InvalidScope(f"Requested scope exceeds the original grant: {' '.join(extra)}")
    return " ".join(requested_scopes)


async def refresh_bridge_tokens(
    adapters: Mapping[ProviderKey, ProviderAdapter],
    refresh_token: Optional[str],
    issuer: Optional[str] = None,
    scope: Optional[str] = None,
    test_exp: Optional[int] = None,
    now: Optional[float] = None,
) -> dict:
    """Refresh every embedded provider and mint a new token pair.

    Raises:
        InvalidRequest: if no refresh token was sent.
        InvalidScope: if ``scope`` asks for more than the token was granted.
        InvalidGrant: for an invalid/expired/non-refresh token, no embedded
        provider credentials, any provider refresh failure, or a provider
        credential that would expire before the new access token is usable.
    """
    if not refresh_token:
        raise InvalidRequest("Missing refresh_token")

    claims = verify_refresh_token(refresh_token, issuer=issuer)
    if claims is None:
        logger.info(f"[REFRESH] Rejected refresh token {describe_token(refresh_token)}")
        raise InvalidGrant("Invalid or expired refresh token")

    subject = TokenSubject.from_claims(claims)
    access_scope = narrow_scope(subject.scope, scope)

    credentials = refresh_credentials_from_claims(claims)
    if not credentials:
        raise InvalidGrant("No provider tokens available for refresh")

    keys = list(credentials)
    logger.info(f"[REFRESH] Refreshing providers: {', '.join(key.value for key in keys)}")
    results = await asyncio.gather(
        *(_refresh_one(adapters, key, credentials[key]) for key in keys),
        return_exceptions=True,
    )

    refreshed: dict[ProviderKey, ProviderTokenRecord] = {}
    failed = []
    for key, result in zip(keys, results):
        if isinstance(result, ProviderError):
            logger.warning(f"[REFRESH] {key.value} refresh failed (retryable: {result.retryable}): {result.description}")
            failed.append(key.value)
        elif isinstance(result, BaseException):
            logger.error(f"[REFRESH] {key.value} refresh raised {type(result).__name__}: {result}")
            failed.append(key.value)
        else:
            refreshed[key] = result

    if failed:
        raise InvalidGrant(f"Failed to refresh {', '.join(failed)} access token")

    now = now if now is not None else time.time()
    if test_exp is None:
        expiring = expiring_providers(refreshed, int(now))
        if expiring:
            names = ", ".join(key.value for key in expiring)
            logger.warning(f"[REFRESH] {names} returned a credential that expires within the access token buffer")
            raise InvalidGrant(f"Refreshed {names} access token expires too soon; re-authorization required")

    rotating = [key for key in refreshed if adapters[key].refresh_token_rotates]
    pair = mint_token_pair(
        refreshed,
        subject,
        rotating,
        test_exp=test_exp,
        now=now,
        access_scope=access_scope,
    )
    logger.info(f"[REFRESH] Refresh successful for {claims['sub']}")
    return pair.to_response(now=now)
