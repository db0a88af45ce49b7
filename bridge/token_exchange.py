"""authorization_code grant: redeem a relay code for its minted token pair.

The pair was minted when the connection completed; nothing here talks to an
upstream provider.
"""

import logging
import secrets
import time
from typing import Optional

from bridge.errors import InvalidGrant, InvalidRequest
from bridge.stores import AuthorizationCodeStore
from bridge.tokens import peek_claims, verify_code_challenge

logger = logging.getLogger(__name__)


def exchange_authorization_code(
    code_store: AuthorizationCodeStore,
    code: Optional[str],
    client_id: Optional[str] = None,
    code_verifier: Optional[str] = None,
    resource: Optional[str] = None,
    now: Optional[float] = None,
) -> dict:
    """Consume a code and build the token response.

    A well-formed request consumes the code before any other check, so a
    rejected redemption still burns it. A code bound to a PKCE challenge is
    only redeemable with the matching verifier.

    Raises:
        InvalidRequest: if no code or no client_id was sent.
        InvalidGrant: for an unknown, expired, consumed or mismatched code,
        or a missing or wrong code_verifier.
    """
    if not code:
        raise InvalidRequest("Missing authorization code")
    if not client_id:
        raise InvalidRequest("Missing client_id")

    entry = code_store.consume(code)
    if entry is None:
        raise InvalidGrant("Authorization code is invalid or expired")

    if entry.client_id and not secrets.compare_digest(entry.client_id, client_id):
        logger.warning("[TOKEN] Authorization code presented by a different client")
        raise InvalidGrant("Authorization code was issued to another client")

    if entry.code_challenge:
        if not code_verifier:
            logger.warning("[TOKEN] Missing code_verifier for a PKCE-bound code")
            raise InvalidGrant("Missing code_verifier")
        if not verify_code_challenge(code_verifier, entry.code_challenge):
            logger.warning("[TOKEN] PKCE verification failed")
            raise InvalidGrant("PKCE verification failed")

    # Our own token straight out of the store; only exp and scope are read back
    claims = peek_claims(entry.access_token) or {}
    now = int(now if now is not None else time.time())
    expires_in = max(0, int(claims.get("exp", now)) - now)

    logger.info(
        f"[TOKEN] Authorization code redeemed for client {client_id} "
        f"(resource: {resource or '-'}, expires in {expires_in}s)"
    )
    response = {
        "access_token": entry.access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "scope": claims.get("scope", ""),
    }
    if entry.refresh_token:
        response["refresh_token"] = entry.refresh_token
    return response
