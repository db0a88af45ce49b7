"""Authorization flow: start, upstream callback relay, connection hub, code exchange."""

from urllib.parse import parse_qs, urlsplit

import pytest

from bridge.authorize import begin_authorization, select_flow
from bridge.callback import build_redirect, handle_callback
from bridge.connection import complete_provider_connect, complete_session, start_provider_connect
from bridge.errors import InvalidGrant, InvalidRequest, ProviderError
from bridge.providers import ProviderKey
from bridge.sessions import DirectExchangeFlow, PendingSessionStore, RelayFlow
from bridge.stores import CODE_TTL_SECONDS, AuthorizationCodeStore
from bridge.token_exchange import exchange_authorization_code
from bridge.tokens import generate_code_challenge, generate_code_verifier, verify_access_token

from conftest import SERVER_URL, FakeAdapter, make_record

REDIRECT_URI = "https://client.example/cb"


@pytest.fixture
def sessions(clock):
    return PendingSessionStore(1800, clock)


@pytest.fixture
def code_store(clock):
    return AuthorizationCodeStore(clock=clock)


def _query(url):
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


# ============== Authorization start ==============

def test_client_challenge_selects_relay_without_verifier(sessions):
    session = begin_authorization(
        sessions,
        client_id="client-1",
        redirect_uri=REDIRECT_URI,
        state="s1",
        code_challenge="abc",
        code_challenge_method="S256",
    )

    assert session.using_own_pkce is False
    assert session.code_verifier is None
    assert session.flow == RelayFlow(code_challenge="abc", code_challenge_method="S256")
    assert sessions.get(session.session_id) is session


def test_missing_challenge_generates_server_verifier(sessions):
    session = begin_authorization(sessions, client_id="client-1", redirect_uri=REDIRECT_URI)

    assert session.using_own_pkce is True
    assert isinstance(session.flow, DirectExchangeFlow)
    assert session.code_verifier


def test_plain_challenge_method_rejected():
    with pytest.raises(InvalidRequest):
        select_flow("abc", "plain")
    with pytest.raises(InvalidRequest):
        select_flow(None, "S256")


def test_each_authorization_gets_its_own_session(sessions):
    first = begin_authorization(sessions, state="a")
    second = begin_authorization(sessions, state="b")
    assert first.session_id != second.session_id
    assert len(sessions) == 2


# ============== Upstream callback ==============

def test_callback_relays_code_and_state(sessions):
    session = begin_authorization(
        sessions, redirect_uri=REDIRECT_URI, state="st-1", code_challenge="abc", code_challenge_method="S256"
    )

    url = handle_callback(sessions, session, "xyz", "st-1")

    assert url.startswith(REDIRECT_URI + "?")
    assert _query(url) == {"code": "xyz", "state": "st-1"}
    assert sessions.get(session.session_id) is None


def test_callback_state_mismatch_rejected_and_purged(sessions):
    session = begin_authorization(
        sessions, redirect_uri=REDIRECT_URI, state="st-1", code_challenge="abc", code_challenge_method="S256"
    )

    with pytest.raises(InvalidRequest):
        handle_callback(sessions, session, "xyz", "forged")
    assert sessions.get(session.session_id) is None


def test_callback_state_may_be_omitted_with_client_pkce(sessions):
    session = begin_authorization(sessions, redirect_uri=REDIRECT_URI, code_challenge="abc")
    assert _query(handle_callback(sessions, session, "xyz", None)) == {"code": "xyz"}


def test_callback_refuses_server_verifier_sessions(sessions):
    session = begin_authorization(sessions, redirect_uri=REDIRECT_URI, state="st-1")

    with pytest.raises(InvalidRequest):
        handle_callback(sessions, session, "xyz", "st-1")
    assert sessions.get(session.session_id) is None


def test_callback_requires_code_and_session(sessions):
    session = begin_authorization(sessions, redirect_uri=REDIRECT_URI, code_challenge="abc")
    with pytest.raises(InvalidRequest):
        handle_callback(sessions, session, "", None)
    with pytest.raises(InvalidRequest):
        handle_callback(sessions, None, "xyz", None)


def test_build_redirect_keeps_existing_query():
    assert build_redirect("https://c.example/cb?x=1", {"code": "c", "state": None}) == "https://c.example/cb?x=1&code=c"


# ============== Connection hub ==============

@pytest.mark.asyncio
async def test_provider_connect_records_tokens(sessions):
    session = begin_authorization(sessions, code_challenge="abc")
    adapter = FakeAdapter(ProviderKey.ATLASSIAN, exchange_result=make_record("atl-access", "atl-refresh"))

    url = start_provider_connect(session, adapter, SERVER_URL)
    params = _query(url)
    assert params["redirect_uri"] == f"{SERVER_URL}/auth/callback/atlassian"
    assert params["code_challenge"] == generate_code_challenge(session.connecting.code_verifier)

    await complete_provider_connect(session, adapter, "provider-code", params["state"], SERVER_URL)

    assert session.connected_providers == [ProviderKey.ATLASSIAN]
    assert session.connecting is None
    assert adapter.exchange_calls[0]["code"] == "provider-code"


@pytest.mark.asyncio
async def test_provider_connect_rejects_wrong_state(sessions):
    session = begin_authorization(sessions)
    adapter = FakeAdapter(ProviderKey.FIGMA, exchange_result=make_record())
    start_provider_connect(session, adapter, SERVER_URL)

    with pytest.raises(InvalidRequest):
        await complete_provider_connect(session, adapter, "provider-code", "forged", SERVER_URL)
    assert adapter.exchange_calls == []
    assert session.provider_tokens == {}


@pytest.mark.asyncio
async def test_provider_connect_surfaces_provider_error(sessions):
    session = begin_authorization(sessions)
    adapter = FakeAdapter(ProviderKey.FIGMA)
    url = start_provider_connect(session, adapter, SERVER_URL)

    with pytest.raises(ProviderError):
        await complete_provider_connect(session, adapter, "provider-code", _query(url)["state"], SERVER_URL)


def test_complete_requires_a_connected_provider(sessions, code_store):
    session = begin_authorization(sessions)
    with pytest.raises(InvalidRequest):
        complete_session(session, sessions, code_store, {}, SERVER_URL)


def test_complete_relay_flow_stores_code(sessions, code_store):
    session = begin_authorization(
        sessions, client_id="client-1", redirect_uri=REDIRECT_URI, state="st-1", code_challenge="abc"
    )
    session.record_provider_tokens(ProviderKey.GOOGLE, make_record(scope="drive.readonly"))

    completed = complete_session(session, sessions, code_store, {}, SERVER_URL)

    params = _query(completed.redirect_url)
    assert params["state"] == "st-1"
    entry = code_store.consume(params["code"])
    assert entry.client_id == "client-1"
    assert entry.code_challenge == "abc"
    assert entry.access_token == completed.tokens.access_token
    assert sessions.get(session.session_id) is None
    claims = verify_access_token(entry.access_token, issuer=SERVER_URL)
    assert claims["scope"] == "drive.readonly"


def test_complete_direct_flow_returns_token(sessions, code_store):
    session = begin_authorization(sessions, scope="custom")
    session.record_provider_tokens(ProviderKey.FIGMA, make_record())

    completed = complete_session(session, sessions, code_store, {}, SERVER_URL, test_exp=45)

    assert completed.redirect_url is None
    assert completed.providers == ["figma"]
    assert len(code_store) == 0
    assert verify_access_token(completed.tokens.access_token)["scope"] == "custom"


# ============== Code exchange ==============

def _relay_code(sessions, code_store, client_id="client-1"):
    verifier = generate_code_verifier()
    session = begin_authorization(
        sessions, client_id=client_id, redirect_uri=REDIRECT_URI, code_challenge=generate_code_challenge(verifier)
    )
    session.record_provider_tokens(ProviderKey.ATLASSIAN, make_record())
    completed = complete_session(session, sessions, code_store, {}, SERVER_URL)
    return _query(completed.redirect_url)["code"], verifier, completed.tokens


def test_exchange_returns_minted_pair(sessions, code_store):
    code, verifier, tokens = _relay_code(sessions, code_store)

    result = exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=verifier)

    assert result["access_token"] == tokens.access_token
    assert result["refresh_token"] == tokens.refresh_token
    assert result["token_type"] == "Bearer"
    assert 0 < result["expires_in"] <= 3600


def test_exchange_after_eleven_minutes_rejected(sessions, code_store, clock):
    code, verifier, _ = _relay_code(sessions, code_store)
    clock.advance(11 * 60)

    with pytest.raises(InvalidGrant):
        exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=verifier)
    assert CODE_TTL_SECONDS < 11 * 60


def test_exchange_is_single_use(sessions, code_store):
    code, verifier, _ = _relay_code(sessions, code_store)
    exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=verifier)

    with pytest.raises(InvalidGrant):
        exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=verifier)


def test_exchange_wrong_verifier_burns_code(sessions, code_store):
    code, verifier, _ = _relay_code(sessions, code_store)

    with pytest.raises(InvalidGrant):
        exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=generate_code_verifier())
    with pytest.raises(InvalidGrant):
        exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=verifier)


def test_exchange_without_verifier_rejected_for_pkce_bound_code(sessions, code_store):
    code, verifier, _ = _relay_code(sessions, code_store)

    with pytest.raises(InvalidGrant):
        exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=None)
    # The failed attempt burned the code
    with pytest.raises(InvalidGrant):
        exchange_authorization_code(code_store, code, client_id="client-1", code_verifier=verifier)


def test_exchange_without_client_id_rejected(sessions, code_store):
    code, verifier, _ = _relay_code(sessions, code_store)

    with pytest.raises(InvalidRequest):
        exchange_authorization_code(code_store, code, client_id=None, code_verifier=verifier)


def test_exchange_by_other_client_rejected(sessions, code_store):
    code, verifier, _ = _relay_code(sessions, code_store)
    with pytest.raises(InvalidGrant):
        exchange_authorization_code(code_store, code, client_id="intruder", code_verifier=verifier)


def test_exchange_requires_code(code_store):
    with pytest.raises(InvalidRequest):
        exchange_authorization_code(code_store, "", client_id="client-1")


def test_exchange_of_code_without_challenge_needs_no_verifier(code_store):
    code_store.store("plain-code", "access", client_id="client-1")
    result = exchange_authorization_code(code_store, "plain-code", client_id="client-1")
    assert result["access_token"] == "access"
