"""OAuth 2.0 discovery metadata and dynamic client registration.

- RFC 8414 authorization server metadata
- RFC 9728 protected resource metadata
- RFC 7591 dynamic client registration (always a public PKCE client)
"""

import logging
import time
import uuid
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError, field_validator

from bridge.errors import InvalidClientMetadata

logger = logging.getLogger(__name__)

# Process start time; exposed as a scope so a restart is visible to clients
# and forces them to acquire fresh tokens.
SERVER_START_TIME = time.time()

GRANT_TYPES = ["authorization_code", "refresh_token"]
RESPONSE_TYPES = ["code"]
CODE_CHALLENGE_METHODS = ["S256"]


def server_instance_scope(started_at: float = None) -> str:
    started_at = SERVER_START_TIME if started_at is None else started_at
    return f"server-instance-{int(started_at * 1000)}"


def supported_scopes(provider_scopes: Iterable[str]) -> list[str]:
    """Union of provider scopes plus offline_access and the instance scope."""
    scopes = []
    for scope_string in provider_scopes:
        for scope in scope_string.split():
            if scope not in scopes:
                scopes.append(scope)
    if "offline_access" not in scopes:
        scopes.append("offline_access")
    scopes.append(server_instance_scope())
    return scopes


def authorization_server_metadata(server_url: str, scopes: list[str]) -> dict:
    return {
        "issuer": server_url,
        "authorization_endpoint": f"{server_url}/authorize",
        "token_endpoint": f"{server_url}/access-token",
        "registration_endpoint": f"{server_url}/register",
        "response_types_supported": RESPONSE_TYPES,
        "response_modes_supported": ["query"],
        "grant_types_supported": GRANT_TYPES,
        "token_endpoint_auth_methods_supported": ["none"],
        "code_challenge_methods_supported": CODE_CHALLENGE_METHODS,
        "scopes_supported": scopes,
    }


def protected_resource_metadata(server_url: str, scopes: list[str]) -> dict:
    return {
        "resource": server_url,
        "authorization_servers": [server_url],
        "scopes_supported": scopes,
        "bearer_methods_supported": ["header"],
        "resource_documentation": f"{server_url}/docs",
    }


def _is_uri(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 client metadata. Unknown fields are accepted and ignored."""

    redirect_uris: list[str]
    client_name: Optional[str] = None
    client_uri: Optional[str] = None
    logo_uri: Optional[str] = None

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v):
        if not v:
            raise ValueError("At least one redirect URI is required")
        for uri in v:
            if not _is_uri(uri):
                raise ValueError(f"Invalid redirect URI: {uri}")
        return v

    @field_validator("client_uri", "logo_uri")
    @classmethod
    def validate_optional_uri(cls, v):
        if v is not None and not _is_uri(v):
            raise ValueError(f"Invalid URI: {v}")
        return v


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


def register_client(data: Any, scope: str) -> dict:
    """Register a public client.

    Requested grant types, auth methods and the like are ignored: every client
    gets authorization_code + refresh_token with S256 PKCE and no secret.

    Raises:
        InvalidClientMetadata: if the metadata does not validate.
    """
    if not isinstance(data, dict):
        raise InvalidClientMetadata("Client metadata must be a JSON object")
    try:
        metadata = ClientRegistrationRequest.model_validate(data)
    except ValidationError as e:
        raise InvalidClientMetadata(_describe(e))

    response = {
        "client_id": f"mcp_{uuid.uuid4()}",
        "client_id_issued_at": int(time.time()),
        "redirect_uris": metadata.redirect_uris,
        "grant_types": list(GRANT_TYPES),
        "response_types": list(RESPONSE_TYPES),
        "token_endpoint_auth_method": "none",
        "scope": scope,
    }
    for name in ("client_name", "client_uri", "logo_uri"):
        value = getattr(metadata, name)
        if value:
            response[name] = value

    logger.info(f"[REGISTER] Registered public client {response['client_id']} ({metadata.client_name or 'unnamed'})")
    return response
