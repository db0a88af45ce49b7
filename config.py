"""Config management for mcp-bridge."""
import os
from typing import Mapping, Optional


DEFAULT_SERVER_URL = "http://localhost:3000"

# Provider scope defaults (space separated, as sent upstream)
DEFAULT_SCOPES = {
    "atlassian": "read:jira-work write:jira-work offline_access",
    "figma": "file_content:read file_comments:read file_comments:write current_user:read",
    "google": "https://www.googleapis.com/auth/drive.readonly",
}


class ProviderCredentials:
    """Client credentials the bridge uses against one upstream provider."""

    def __init__(self, key: str, client_id: str, client_secret: str, scopes: str):
        self.key = key
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes

    def __repr__(self) -> str:
        return f"ProviderCredentials(key={self.key!r}, client_id={self.client_id!r})"


class Config:
    """Configuration container."""

    def __init__(self, data: Mapping[str, str] = None):
        self.data = dict(data or {})

    def _int(self, name: str, default: Optional[int]) -> Optional[int]:
        value = self.data.get(name)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"{name} must be an integer, got {value!r}")

    @property
    def server_url(self) -> str:
        return self.data.get("SERVER_URL", DEFAULT_SERVER_URL).rstrip("/")

    @property
    def host(self) -> str:
        return self.data.get("HOST", "0.0.0.0")

    @property
    def port(self) -> int:
        return self._int("PORT", 3000)

    @property
    def jwt_secret(self) -> Optional[str]:
        return self.data.get("JWT_SECRET") or None

    @property
    def test_short_auth_token_exp(self) -> Optional[int]:
        return self._int("TEST_SHORT_AUTH_TOKEN_EXP", None)

    @property
    def session_ttl_seconds(self) -> int:
        return self._int("SESSION_TTL_SECONDS", 30 * 60)

    @property
    def protected_prefix(self) -> str:
        return "/" + self.data.get("PROTECTED_PATH_PREFIX", "/api").strip("/")

    @property
    def log_level(self) -> str:
        return self.data.get("LOG_LEVEL", "INFO").upper()

    @property
    def log_format(self) -> str:
        return self.data.get("LOG_FORMAT", "plain").lower()

    def provider_credentials(self, key: str) -> Optional[ProviderCredentials]:
        """Return credentials for a provider, or None if it is not configured."""
        prefix = key.upper()
        client_id = self.data.get(f"{prefix}_CLIENT_ID")
        client_secret = self.data.get(f"{prefix}_CLIENT_SECRET")
        if not client_id or not client_secret:
            return None
        scopes = self.data.get(f"{prefix}_SCOPES") or DEFAULT_SCOPES.get(key, "")
        return ProviderCredentials(key, client_id, client_secret, scopes)

    def enabled_providers(self) -> list[str]:
        return [key for key in DEFAULT_SCOPES if self.provider_credentials(key)]

    def is_valid(self) -> bool:
        """Check if config has a signing secret and at least one provider."""
        return bool(self.jwt_secret and self.enabled_providers())


def load_config(environ: Mapping[str, str] = None) -> Config:
    """Load config from the environment."""
    return Config(os.environ if environ is None else environ)
