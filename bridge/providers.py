"""Upstream provider adapters.

Every upstream provider (issue tracker, design tool, document store) is
reached through the same ProviderAdapter contract: exchange an authorization
code, refresh an access token, and declare whether refresh tokens rotate.
Adapters translate every upstream failure into ProviderError so callers never
see provider-specific error shapes.
"""

import base64
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import urlencode

import httpx

from config import Config
from bridge.errors import ProviderError

logger = logging.getLogger(__name__)


class ProviderKey(str, Enum):
    """Closed set of providers whose credentials a bridge token may embed."""

    ATLASSIAN = "atlassian"
    FIGMA = "figma"
    GOOGLE = "google"

    @classmethod
    def parse(cls, value: str) -> Optional["ProviderKey"]:
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class ProviderTokenRecord:
    """Credentials issued by one provider, with an absolute expiry (epoch seconds)."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: int
    scope: Optional[str] = None

    @classmethod
    def from_token_response(cls, data: dict, default_expires_in: int, now: Optional[float] = None) -> "ProviderTokenRecord":
        now = int(now if now is not None else time.time())
        expires_in = data.get("expires_in") or default_expires_in
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_at=now + int(expires_in),
            scope=data.get("scope"),
        )

    @classmethod
    def from_claims(cls, block: dict) -> "ProviderTokenRecord":
        return cls(
            access_token=block.get("access_token", ""),
            refresh_token=block.get("refresh_token") or None,
            expires_at=int(block.get("expires_at") or 0),
            scope=block.get("scope"),
        )

    def to_claims(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
        }


@dataclass(frozen=True)
class ProviderSpec:
    """Static wire details of a provider's OAuth endpoints."""

    key: ProviderKey
    display_name: str
    description: str
    authorize_url: str
    token_url: str
    refresh_url: str
    refresh_token_rotates: bool
    json_body: bool = False
    basic_auth_refresh: bool = False
    supports_pkce: bool = False
    default_expires_in: int = 3600
    extra_authorize_params: dict = field(default_factory=dict)


PROVIDER_SPECS: dict[ProviderKey, ProviderSpec] = {
    ProviderKey.ATLASSIAN: ProviderSpec(
        key=ProviderKey.ATLASSIAN,
        display_name="Atlassian (Jira)",
        description="Access Jira issues, attachments, and project data",
        authorize_url="https://auth.atlassian.com/authorize",
        token_url="https://auth.atlassian.com/oauth/token",
        refresh_url="https://auth.atlassian.com/oauth/token",
        refresh_token_rotates=True,
        json_body=True,
        supports_pkce=True,
        extra_authorize_params={"audience": "api.atlassian.com", "prompt": "consent"},
    ),
    ProviderKey.FIGMA: ProviderSpec(
        key=ProviderKey.FIGMA,
        display_name="Figma",
        description="Access Figma designs, files, and comments",
        authorize_url="https://www.figma.com/oauth",
        token_url="https://api.figma.com/v1/oauth/token",
        refresh_url="https://api.figma.com/v1/oauth/refresh",
        refresh_token_rotates=False,
        basic_auth_refresh=True,
        default_expires_in=90 * 24 * 60 * 60,
    ),
    ProviderKey.GOOGLE: ProviderSpec(
        key=ProviderKey.GOOGLE,
        display_name="Google Drive",
        description="Access Google Docs and Drive files",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        refresh_url="https://oauth2.googleapis.com/token",
        refresh_token_rotates=False,
        extra_authorize_params={"access_type": "offline", "prompt": "consent"},
    ),
}


@runtime_checkable
class ProviderAdapter(Protocol):
    """Interface all provider adapters must implement."""

    key: ProviderKey
    display_name: str
    description: str
    refresh_token_rotates: bool
    supports_pkce: bool

    def build_authorize_url(
        self,
        *,
        redirect_uri: str,
        state: str,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        """Construct the provider authorize URL for the bridge callback."""

    async def exchange_code(
        self, code: str, code_verifier: Optional[str] = None, *, redirect_uri: str
    ) -> ProviderTokenRecord:
        """Exchange an authorization code for provider tokens."""

    async def refresh_access_token(self, refresh_token: str) -> ProviderTokenRecord:
        """Refresh provider tokens. refresh_token on the result may be None."""


class OAuthProviderAdapter:
    """ProviderAdapter speaking plain OAuth 2.0 token-endpoint calls via httpx."""

    def __init__(
        self,
        spec: ProviderSpec,
        client_id: str,
        client_secret: str,
        scopes: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.spec = spec
        self.key = spec.key
        self.display_name = spec.display_name
        self.description = spec.description
        self.refresh_token_rotates = spec.refresh_token_rotates
        self.supports_pkce = spec.supports_pkce
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self._transport = transport

    def build_authorize_url(
        self,
        *,
        redirect_uri: str,
        state: str,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": self.scopes,
            "state": state,
        }
        params.update(self.spec.extra_authorize_params)
        if self.supports_pkce and code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = code_challenge_method or "S256"
        return f"{self.spec.authorize_url}?{urlencode(params)}"

    async def exchange_code(
        self, code: str, code_verifier: Optional[str] = None, *, redirect_uri: str
    ) -> ProviderTokenRecord:
        body = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if self.supports_pkce and code_verifier:
            body["code_verifier"] = code_verifier

        logger.info(f"[PROVIDER] Exchanging authorization code with {self.key.value}")
        data = await self._post(self.spec.token_url, body)
        return ProviderTokenRecord.from_token_response(data, self.spec.default_expires_in)

    async def refresh_access_token(self, refresh_token: str) -> ProviderTokenRecord:
        headers = {}
        if self.spec.basic_auth_refresh:
            # Client credentials travel in the Authorization header only
            basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
            headers["Authorization"] = f"Basic {basic}"
            body = {"refresh_token": refresh_token}
        else:
            body = {
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            }

        logger.info(f"[PROVIDER] Refreshing {self.key.value} access token")
        data = await self._post(self.spec.refresh_url, body, headers)
        return ProviderTokenRecord.from_token_response(data, self.spec.default_expires_in)

    async def _post(self, url: str, body: dict, headers: Optional[dict] = None) -> dict[str, Any]:
        provider = self.key.value
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                if self.spec.json_body:
                    response = await client.post(url, json=body, headers=headers)
                else:
                    response = await client.post(url, data=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"[PROVIDER] Network error contacting {provider}: {e}")
            raise ProviderError(provider, f"Network error contacting {provider}", retryable=True) from e

        if response.status_code >= 400:
            logger.warning(f"[PROVIDER] {provider} token endpoint returned {response.status_code}")
            raise ProviderError.from_status(provider, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(provider, f"{provider} returned a non-JSON token response", retryable=True) from e

        if not isinstance(data, dict) or not data.get("access_token"):
            raise ProviderError(provider, f"{provider} token response has no access_token", retryable=True)
        return data


def build_provider_registry(
    config: Config, transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict[ProviderKey, ProviderAdapter]:
    """Create adapters for every provider with configured credentials."""
    registry: dict[ProviderKey, ProviderAdapter] = {}
    for key, spec in PROVIDER_SPECS.items():
        creds = config.provider_credentials(key.value)
        if creds is None:
            continue
        registry[key] = OAuthProviderAdapter(spec, creds.client_id, creds.client_secret, creds.scopes, transport)
        logger.info(f"[STARTUP] Provider enabled: {key.value}")
    return registry


def merge_refreshed_record(
    previous_refresh_token: str, fresh: ProviderTokenRecord, rotates: bool
) -> ProviderTokenRecord:
    """Combine a fresh refresh response with the credential it replaced.

    Everything comes from the fresh response, except that a non-rotating
    provider which omits the refresh token keeps the previous one. Dropping it
    would make every later refresh for that provider impossible.
    """
    if fresh.refresh_token or rotates:
        return fresh
    return replace(fresh, refresh_token=previous_refresh_token)
