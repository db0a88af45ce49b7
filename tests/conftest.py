import asyncio
import time
from typing import Optional
from urllib.parse import urlencode

import pytest

from config import Config
from bridge.errors import ProviderError
from bridge.providers import ProviderKey, ProviderTokenRecord
from bridge.tokens import configure_secret

TEST_SECRET = "test-secret-for-bridge-tokens-0123456789abcdef"
SERVER_URL = "https://bridge.example"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter:
    """In-memory ProviderAdapter that records calls and returns canned results."""

    def __init__(
        self,
        key: ProviderKey,
        *,
        rotates: bool = False,
        supports_pkce: bool = True,
        exchange_result: Optional[ProviderTokenRecord] = None,
        refresh_result: Optional[ProviderTokenRecord] = None,
        refresh_error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.key = key
        self.display_name = key.value.title()
        self.description = f"Fake {key.value} provider"
        self.refresh_token_rotates = rotates
        self.supports_pkce = supports_pkce
        self.exchange_result = exchange_result
        self.refresh_result = refresh_result
        self.refresh_error = refresh_error
        self.delay = delay
        self.exchange_calls: list[dict] = []
        self.refresh_calls: list[str] = []
        self.refresh_finished = False

    def build_authorize_url(self, *, redirect_uri, state, code_challenge=None, code_challenge_method=None):
        params = {"redirect_uri": redirect_uri, "state": state}
        if self.supports_pkce and code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = code_challenge_method
        return f"https://{self.key.value}.example/authorize?{urlencode(params)}"

    async def exchange_code(self, code, code_verifier=None, *, redirect_uri):
        self.exchange_calls.append({"code": code, "code_verifier": code_verifier, "redirect_uri": redirect_uri})
        if self.exchange_result is None:
            raise ProviderError(self.key.value, f"{self.key.value} rejected the code", retryable=False)
        return self.exchange_result

    async def refresh_access_token(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        self.refresh_finished = True
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_result


def make_record(
    access_token: str = "provider-access",
    refresh_token: Optional[str] = "provider-refresh",
    expires_in: int = 3600,
    scope: Optional[str] = None,
) -> ProviderTokenRecord:
    return ProviderTokenRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=int(time.time()) + expires_in,
        scope=scope,
    )


@pytest.fixture(autouse=True)
def signing_secret():
    configure_secret(TEST_SECRET)
    yield
    configure_secret(None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    return Config({"SERVER_URL": SERVER_URL, "JWT_SECRET": TEST_SECRET})
