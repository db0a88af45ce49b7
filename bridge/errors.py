"""OAuth error taxonomy shared by every bridge endpoint.

All controller failures are raised as OAuthError subclasses and rendered by
a single exception handler as {"error", "error_description"} JSON.
"""

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class OAuthError(Exception):
    """OAuth-style error with an HTTP status."""

    error = "server_error"
    status_code = 400

    def __init__(self, description: str = "", status_code: Optional[int] = None):
        super().__init__(description or self.error)
        self.description = description
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


class InvalidRequest(OAuthError):
    error = "invalid_request"


class InvalidClientMetadata(OAuthError):
    error = "invalid_client_metadata"


class InvalidGrant(OAuthError):
    error = "invalid_grant"


class InvalidScope(OAuthError):
    error = "invalid_scope"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500


class ProviderError(OAuthError):
    """Upstream provider failure, already classified into the taxonomy.

    A non-retryable error (upstream 4xx such as invalid_grant) means the user
    must re-authorize that provider. A retryable one (5xx, transport) may
    succeed if the caller tries again later.
    """

    def __init__(self, provider: str, description: str, retryable: bool):
        super().__init__(description)
        self.provider = provider
        self.retryable = retryable
        self.error = "server_error" if retryable else "invalid_grant"

    @classmethod
    def from_status(cls, provider: str, status_code: int, body: str) -> "ProviderError":
        retryable = status_code >= 500
        return cls(provider, f"{provider} token endpoint returned {status_code}: {body[:200]}", retryable)


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)
