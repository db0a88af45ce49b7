import time

import pytest

from bridge.errors import InvalidGrant, InvalidRequest, InvalidScope, ProviderError
from bridge.minting import TokenSubject, mint_token_pair, refresh_credentials_from_claims, providers_from_claims
from bridge.providers import ProviderKey
from bridge.refresh import refresh_bridge_tokens
from bridge.tokens import sign_token, verify_access_token, verify_refresh_token

from conftest import SERVER_URL, FakeAdapter, make_record


def _issue(records, rotating=()):
    pair = mint_token_pair(records, TokenSubject.new(SERVER_URL, scope="read write"), list(rotating))
    return pair.refresh_token


@pytest.mark.asyncio
async def test_static_provider_keeps_original_refresh_credential():
    atlassian = FakeAdapter(
        ProviderKey.ATLASSIAN,
        rotates=True,
        refresh_result=make_record("atl-access-2", "atl-refresh-2"),
    )
    figma = FakeAdapter(ProviderKey.FIGMA, refresh_result=make_record("fig-access-2", None))
    refresh_token = _issue(
        {
            ProviderKey.ATLASSIAN: make_record("atl-access-1", "atl-refresh-1"),
            ProviderKey.FIGMA: make_record("fig-access-1", "fig-refresh-original"),
        },
        rotating=[ProviderKey.ATLASSIAN],
    )

    result = await refresh_bridge_tokens(
        {ProviderKey.ATLASSIAN: atlassian, ProviderKey.FIGMA: figma}, refresh_token, issuer=SERVER_URL
    )

    assert atlassian.refresh_calls == ["atl-refresh-1"]
    assert figma.refresh_calls == ["fig-refresh-original"]
    next_refresh = verify_refresh_token(result["refresh_token"], issuer=SERVER_URL)
    assert refresh_credentials_from_claims(next_refresh) == {
        ProviderKey.ATLASSIAN: "atl-refresh-2",
        ProviderKey.FIGMA: "fig-refresh-original",
    }
    access = verify_access_token(result["access_token"], issuer=SERVER_URL)
    providers = providers_from_claims(access)
    assert providers[ProviderKey.FIGMA].access_token == "fig-access-2"
    assert providers[ProviderKey.FIGMA].refresh_token == "fig-refresh-original"
    assert result["token_type"] == "Bearer"
    assert result["scope"] == "read write"


@pytest.mark.asyncio
async def test_identity_claims_survive_refresh():
    google = FakeAdapter(ProviderKey.GOOGLE, refresh_result=make_record("g2", None))
    refresh_token = _issue({ProviderKey.GOOGLE: make_record("g1", "g-refresh")})
    original = verify_refresh_token(refresh_token)

    result = await refresh_bridge_tokens({ProviderKey.GOOGLE: google}, refresh_token, issuer=SERVER_URL)

    access = verify_access_token(result["access_token"], issuer=SERVER_URL)
    assert access["sub"] == original["sub"]
    assert access["aud"] == original["aud"]


@pytest.mark.asyncio
async def test_one_failing_provider_fails_the_whole_refresh():
    atlassian = FakeAdapter(
        ProviderKey.ATLASSIAN,
        rotates=True,
        refresh_result=make_record("atl-access-2", "atl-refresh-2"),
        delay=0.05,
    )
    figma = FakeAdapter(
        ProviderKey.FIGMA,
        refresh_error=ProviderError("figma", "figma token endpoint returned 400", retryable=False),
    )
    refresh_token = _issue({
        ProviderKey.ATLASSIAN: make_record("a", "atl-refresh-1"),
        ProviderKey.FIGMA: make_record("f", "fig-refresh-1"),
    })

    with pytest.raises(InvalidGrant) as exc_info:
        await refresh_bridge_tokens(
            {ProviderKey.ATLASSIAN: atlassian, ProviderKey.FIGMA: figma}, refresh_token, issuer=SERVER_URL
        )

    # The slow provider settled before the failure was reported
    assert atlassian.refresh_finished
    assert "figma" in exc_info.value.description
    assert "atl-refresh-2" not in exc_info.value.description


@pytest.mark.asyncio
async def test_unexpected_adapter_exception_counts_as_failure():
    google = FakeAdapter(ProviderKey.GOOGLE, refresh_error=RuntimeError("socket closed"))
    refresh_token = _issue({ProviderKey.GOOGLE: make_record("g", "g-refresh")})

    with pytest.raises(InvalidGrant):
        await refresh_bridge_tokens({ProviderKey.GOOGLE: google}, refresh_token)


@pytest.mark.asyncio
async def test_provider_missing_from_registry_fails_refresh():
    refresh_token = _issue({ProviderKey.FIGMA: make_record("f", "fig-refresh")})

    with pytest.raises(InvalidGrant):
        await refresh_bridge_tokens({}, refresh_token)


@pytest.mark.asyncio
async def test_missing_refresh_token_is_invalid_request():
    with pytest.raises(InvalidRequest):
        await refresh_bridge_tokens({}, None)


@pytest.mark.asyncio
async def test_access_token_cannot_be_used_to_refresh():
    pair = mint_token_pair({ProviderKey.GOOGLE: make_record()}, TokenSubject.new(SERVER_URL), [])

    with pytest.raises(InvalidGrant):
        await refresh_bridge_tokens({}, pair.access_token)


@pytest.mark.asyncio
async def test_refresh_token_without_provider_credentials_rejected():
    token = sign_token({
        "type": "refresh_token",
        "sub": "user-1",
        "iss": SERVER_URL,
        "exp": int(time.time()) + 600,
        "providers": {},
    })

    with pytest.raises(InvalidGrant):
        await refresh_bridge_tokens({}, token, issuer=SERVER_URL)


@pytest.mark.asyncio
async def test_provider_credential_expiring_inside_buffer_fails_refresh():
    google = FakeAdapter(ProviderKey.GOOGLE, refresh_result=make_record("g2", None, expires_in=30))
    refresh_token = _issue({ProviderKey.GOOGLE: make_record("g1", "g-refresh")})

    with pytest.raises(InvalidGrant) as exc_info:
        await refresh_bridge_tokens({ProviderKey.GOOGLE: google}, refresh_token, issuer=SERVER_URL)
    assert "google" in exc_info.value.description


@pytest.mark.asyncio
async def test_test_mode_allows_short_lived_provider_credential():
    google = FakeAdapter(ProviderKey.GOOGLE, refresh_result=make_record("g2", None, expires_in=30))
    refresh_token = _issue({ProviderKey.GOOGLE: make_record("g1", "g-refresh")})

    result = await refresh_bridge_tokens({ProviderKey.GOOGLE: google}, refresh_token, issuer=SERVER_URL, test_exp=20)
    assert 0 < result["expires_in"] <= 20


@pytest.mark.asyncio
async def test_requested_scope_narrows_access_token_only():
    google = FakeAdapter(ProviderKey.GOOGLE, refresh_result=make_record("g2", None))
    refresh_token = _issue({ProviderKey.GOOGLE: make_record("g1", "g-refresh")})

    result = await refresh_bridge_tokens({ProviderKey.GOOGLE: google}, refresh_token, issuer=SERVER_URL, scope="read")

    assert result["scope"] == "read"
    assert verify_access_token(result["access_token"], issuer=SERVER_URL)["scope"] == "read"
    assert verify_refresh_token(result["refresh_token"], issuer=SERVER_URL)["scope"] == "read write"


@pytest.mark.asyncio
async def test_requested_scope_cannot_widen_grant():
    google = FakeAdapter(ProviderKey.GOOGLE, refresh_result=make_record("g2", None))
    refresh_token = _issue({ProviderKey.GOOGLE: make_record("g1", "g-refresh")})

    with pytest.raises(InvalidScope):
        await refresh_bridge_tokens({ProviderKey.GOOGLE: google}, refresh_token, issuer=SERVER_URL, scope="read admin")
    assert google.refresh_calls == []
