"""Bearer-token middleware for the bridge's protected resource paths.

Validates bridge access tokens on every request under the protected prefix.
Uses JWT for stateless token validation - tokens survive server restarts,
and nothing is looked up per request.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from bridge.discovery import server_instance_scope
from bridge.minting import providers_from_claims
from bridge.tokens import verify_access_token

logger = logging.getLogger(__name__)


class BridgeAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate Bearer tokens for paths under a prefix."""

    def __init__(self, app, server_url: str, protected_prefix: str = "/api"):
        super().__init__(app)
        self.server_url = server_url
        self.protected_prefix = protected_prefix.rstrip("/")

    def _is_protected(self, path: str) -> bool:
        return path == self.protected_prefix or path.startswith(self.protected_prefix + "/")

    def _unauthorized(self, description: str) -> JSONResponse:
        challenge = (
            f'Bearer resource_metadata="{self.server_url}/.well-known/oauth-protected-resource", '
            f'scope="{server_instance_scope()}"'
        )
        return JSONResponse(
            {"error": "invalid_token", "error_description": description},
            status_code=401,
            headers={"WWW-Authenticate": challenge},
        )

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or not self._is_protected(request.url.path):
            return await call_next(request)

        # Check Bearer token
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            logger.info("[AUTH] Request rejected: no Bearer token")
            return self._unauthorized("Missing or invalid Authorization header")

        token = auth_header[7:]

        # Verify JWT token (stateless - no storage lookup needed)
        claims = verify_access_token(token, issuer=self.server_url)
        if not claims:
            logger.info("[AUTH] Request rejected: invalid or expired token")
            return self._unauthorized("Invalid or expired token")

        request.state.token_claims = claims
        return await call_next(request)


async def session_info(request: Request):
    """Describe the caller's bridge token without exposing provider credentials."""
    claims = request.state.token_claims
    providers = providers_from_claims(claims)
    return {
        "sub": claims["sub"],
        "scope": claims.get("scope", ""),
        "expires_at": claims["exp"],
        "providers": [
            {"provider": key.value, "expires_at": record.expires_at, "scope": record.scope}
            for key, record in providers.items()
        ],
    }
