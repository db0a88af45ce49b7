"""OAuth 2.0 bridge endpoints.

This module contains all bridge-facing endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/register)
- Authorization flow (/authorize, /callback)
- Connection hub (/auth/connect, /auth/connect/{provider}, /auth/callback/{provider}, /auth/done)
- Token endpoint (/access-token, alias /refresh-token)
"""

import html
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from config import Config
from bridge.authorize import begin_authorization
from bridge.callback import handle_callback
from bridge.connection import complete_provider_connect, complete_session, start_provider_connect
from bridge.discovery import (
    authorization_server_metadata,
    protected_resource_metadata,
    register_client,
    supported_scopes,
)
from bridge.errors import InvalidClientMetadata, InvalidRequest, OAuthError, ProviderError, ServerError, UnsupportedGrantType
from bridge.providers import ProviderAdapter, ProviderKey
from bridge.refresh import refresh_bridge_tokens
from bridge.sessions import SESSION_COOKIE, PendingAuthorizationSession, PendingSessionStore
from bridge.stores import AuthorizationCodeStore
from bridge.templates import COMPLETE_PAGE, CONNECT_LINK, CONNECTED_BADGE, ERROR_PAGE, HUB_PAGE, PROVIDER_ROW
from bridge.token_exchange import exchange_authorization_code

logger = logging.getLogger(__name__)

# Router for bridge endpoints
router = APIRouter(tags=["oauth"])

# These will be set by init_bridge_routes()
_config: Config = Config()
_providers: dict[ProviderKey, ProviderAdapter] = {}
_code_store: AuthorizationCodeStore = None
_session_store: PendingSessionStore = None


def init_bridge_routes(
    config: Config,
    providers: dict[ProviderKey, ProviderAdapter],
    code_store: AuthorizationCodeStore,
    session_store: PendingSessionStore,
):
    """Initialize bridge routes with config, provider adapters and stores.

    Must be called before including the router in the app.
    """
    global _config, _providers, _code_store, _session_store
    _config = config
    _providers = providers
    _code_store = code_store
    _session_store = session_store


def _scopes() -> list[str]:
    creds = (_config.provider_credentials(key) for key in _config.enabled_providers())
    return supported_scopes(c.scopes for c in creds)


def _error_page(message: str, status_code: int = 400) -> HTMLResponse:
    return HTMLResponse(ERROR_PAGE.format(message=html.escape(message)), status_code=status_code)


def _current_session(request: Request) -> Optional[PendingAuthorizationSession]:
    return _session_store.get(request.cookies.get(SESSION_COOKIE))


def _set_session_cookie(response, session_id: str):
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        max_age=_config.session_ttl_seconds,
        httponly=True,
        secure=_config.server_url.startswith("https://"),
        samesite="lax",
    )


# ============== OAuth 2.0 Discovery Endpoints ==============

@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server():
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return authorization_server_metadata(_config.server_url, _scopes())


@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource():
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return protected_resource_metadata(_config.server_url, _scopes())


# ============== Client Registration ==============

@router.post("/register")
async def register(request: Request):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        data = await request.json()
    except ValueError:
        raise InvalidClientMetadata("Request body must be valid JSON")

    client_info = register_client(data, " ".join(_scopes()))
    return JSONResponse(client_info, status_code=201)


# ============== Authorization Flow ==============

@router.get("/authorize")
async def authorize(
    request: Request,
    response_type: str = "code",
    client_id: str = "",
    redirect_uri: str = "",
    scope: str = "",
    state: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "",
    resource: str = "",
):
    """OAuth 2.0 Authorization Endpoint - starts a pending session and opens the hub."""
    if response_type != "code":
        return _error_page(f"Unsupported response_type: {response_type}")

    # A new flow replaces whatever this browser had in progress
    previous = request.cookies.get(SESSION_COOKIE)
    if previous:
        _session_store.purge(previous)

    try:
        session = begin_authorization(
            _session_store,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            resource=resource,
        )
    except InvalidRequest as e:
        return _error_page(e.description)

    response = RedirectResponse(url="/auth/connect", status_code=302)
    _set_session_cookie(response, session.session_id)
    return response


@router.get("/callback")
async def callback(request: Request, code: str = "", state: str = ""):
    """Upstream-facing callback: relay the authorization code to the client."""
    try:
        redirect_url = handle_callback(_session_store, _current_session(request), code, state)
    except InvalidRequest as e:
        response = _error_page(e.description)
        response.delete_cookie(SESSION_COOKIE)
        return response

    response = RedirectResponse(url=redirect_url, status_code=302)
    response.delete_cookie(SESSION_COOKIE)
    return response


# ============== Connection Hub ==============

@router.get("/auth/connect")
async def connect_hub(request: Request):
    """List enabled providers and their connection status for this session."""
    session = _current_session(request)
    if session is None:
        return _error_page("Invalid or expired session. Please start again from your client.")

    rows = []
    for key, adapter in _providers.items():
        if key in session.provider_tokens:
            action = CONNECTED_BADGE
        else:
            action = CONNECT_LINK.format(key=key.value)
        rows.append(PROVIDER_ROW.format(
            display_name=html.escape(adapter.display_name),
            description=html.escape(adapter.description),
            action=action,
        ))

    return HTMLResponse(HUB_PAGE.format(
        client_name=html.escape(session.client_id or "An MCP client"),
        providers="".join(rows),
        done_class="" if session.provider_tokens else " disabled",
    ))


@router.get("/auth/connect/{provider}")
async def connect_provider(request: Request, provider: str):
    """Send the browser to one provider's consent screen."""
    session = _current_session(request)
    if session is None:
        return _error_page("Invalid or expired session. Please start again from your client.")

    key = ProviderKey.parse(provider)
    adapter = _providers.get(key) if key else None
    if adapter is None:
        return _error_page(f"Unknown or disabled provider: {provider}")

    url = start_provider_connect(session, adapter, _config.server_url)
    return RedirectResponse(url=url, status_code=302)


@router.get("/auth/callback/{provider}")
async def provider_callback(
    request: Request,
    provider: str,
    code: str = "",
    state: str = "",
    error: str = "",
    error_description: str = "",
):
    """Provider redirect target: record the provider's tokens in the session."""
    session = _current_session(request)
    if session is None:
        return _error_page("Invalid or expired session. Please start again from your client.")

    key = ProviderKey.parse(provider)
    adapter = _providers.get(key) if key else None
    if adapter is None:
        return _error_page(f"Unknown or disabled provider: {provider}")

    if error:
        logger.warning(f"[CONNECT] {provider} returned error: {error}")
        session.connecting = None
        return _error_page(f"{adapter.display_name} authorization failed: {error_description or error}")

    try:
        await complete_provider_connect(session, adapter, code, state, _config.server_url)
    except InvalidRequest as e:
        logger.warning(f"[CONNECT] {provider} callback rejected: {e.description}")
        return _error_page(e.description)
    except ProviderError as e:
        return _error_page(f"Could not connect {adapter.display_name}: {e.description}", status_code=502)

    return RedirectResponse(url="/auth/connect", status_code=302)


@router.get("/auth/done")
async def connect_done(request: Request):
    """Mint the bridge tokens and finish the flow."""
    session = _current_session(request)
    if session is None:
        return _error_page("Invalid or expired session. Please start again from your client.")

    try:
        completed = complete_session(
            session,
            _session_store,
            _code_store,
            _providers,
            _config.server_url,
            test_exp=_config.test_short_auth_token_exp,
        )
    except InvalidRequest as e:
        return _error_page(e.description)

    if completed.redirect_url:
        response = RedirectResponse(url=completed.redirect_url, status_code=302)
    else:
        response = HTMLResponse(COMPLETE_PAGE.format(
            providers=html.escape(", ".join(completed.providers)),
            access_token=html.escape(completed.tokens.access_token),
            expires_in=completed.tokens.to_response()["expires_in"],
        ))
    response.delete_cookie(SESSION_COOKIE)
    return response


# ============== Token Endpoint ==============

async def _read_token_request(request: Request) -> dict:
    """Handle form data or JSON."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise InvalidRequest("Malformed JSON body")
        if not isinstance(data, dict):
            raise InvalidRequest("Token request must be a JSON object")
        return data

    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.post("/access-token")
@router.post("/refresh-token")
async def token(request: Request):
    """OAuth 2.0 Token Endpoint."""
    data = await _read_token_request(request)
    grant_type = data.get("grant_type")
    logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {data.get('client_id')}")

    try:
        if grant_type == "authorization_code":
            result = exchange_authorization_code(
                _code_store,
                data.get("code"),
                client_id=data.get("client_id"),
                code_verifier=data.get("code_verifier"),
                resource=data.get("resource"),
            )
        elif grant_type == "refresh_token":
            result = await refresh_bridge_tokens(
                _providers,
                data.get("refresh_token"),
                issuer=_config.server_url,
                scope=data.get("scope"),
                test_exp=_config.test_short_auth_token_exp,
            )
        else:
            raise UnsupportedGrantType(f"Unsupported grant_type: {grant_type or 'missing'}")
    except OAuthError:
        raise
    except Exception:
        logger.exception(f"[TOKEN] Unexpected error handling {grant_type} grant")
        raise ServerError("Internal server error")

    return JSONResponse(result, headers={"Cache-Control": "no-store"})
