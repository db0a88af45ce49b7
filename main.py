"""MCP Bridge - OAuth 2.0 authorization server for multiple upstream providers.

It handles:
- OAuth discovery and dynamic client registration
- Authorization flow with a connection hub for per-provider consent
- Token endpoint minting bridge tokens that embed provider credentials
- Refresh across every embedded provider (all-or-nothing)
- Bearer-token protection for paths under PROTECTED_PATH_PREFIX

MCP clients (ChatGPT, Claude, etc.) authenticate once against this server
and receive a single token carrying every connected provider's credentials.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Config, load_config
from logging_config import setup_logging

# Load environment: .env (local override) if present
_env_file = Path(".env")
if _env_file.exists():
    load_dotenv(_env_file)

from bridge.endpoints import router as bridge_router, init_bridge_routes
from bridge.errors import OAuthError, oauth_error_handler
from bridge.middleware import BridgeAuthMiddleware, session_info
from bridge.providers import ProviderAdapter, ProviderKey, build_provider_registry
from bridge.sessions import PendingSessionStore
from bridge.stores import AuthorizationCodeStore, run_sweeper
from bridge.tokens import configure_secret

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Config] = None,
    providers: Optional[dict[ProviderKey, ProviderAdapter]] = None,
    code_store: Optional[AuthorizationCodeStore] = None,
    session_store: Optional[PendingSessionStore] = None,
) -> FastAPI:
    """Build the bridge application.

    Everything defaults to the environment; tests inject fakes.
    """
    config = config or load_config()
    configure_secret(config.jwt_secret)
    if providers is None:
        providers = build_provider_registry(config)
    code_store = code_store or AuthorizationCodeStore()
    session_store = session_store or PendingSessionStore(config.session_ttl_seconds)

    logger.info(f"[STARTUP] Config loaded - valid: {config.is_valid()}")
    logger.info(f"[STARTUP] SERVER_URL: {config.server_url}")
    logger.info(f"[STARTUP] Providers: {', '.join(key.value for key in providers) or 'none'}")
    if config.test_short_auth_token_exp is not None:
        logger.warning(f"[STARTUP] TEST MODE: access tokens expire after {config.test_short_auth_token_exp}s")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(run_sweeper([code_store.sweep, session_store.sweep]))
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    app = FastAPI(
        title="MCP Bridge",
        description="OAuth 2.0 bridge embedding upstream provider credentials in one token",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        BridgeAuthMiddleware,
        server_url=config.server_url,
        protected_prefix=config.protected_prefix,
    )
    # Add CORS middleware for browser-based MCP client access (outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(OAuthError, oauth_error_handler)

    # ============== Include Routers ==============

    init_bridge_routes(config, providers, code_store, session_store)
    app.include_router(bridge_router)
    app.add_api_route(f"{config.protected_prefix}/session", session_info, methods=["GET"])

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "mcp-bridge"}

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        return {
            "name": "MCP Bridge",
            "version": VERSION,
            "endpoints": {
                "authorize": "/authorize",
                "token": "/access-token",
                "register": "/register",
                "session": f"{config.protected_prefix}/session",
            },
            "providers": [key.value for key in providers],
            "oauth": {
                "protected_resource": f"{config.server_url}/.well-known/oauth-protected-resource",
                "authorization_server": f"{config.server_url}/.well-known/oauth-authorization-server",
            },
        }

    return app


# ============== Main Entry Point ==============

if __name__ == "__main__":
    import uvicorn

    _config = load_config()
    setup_logging(_config.log_level, _config.log_format)
    logger.info(f"Starting MCP bridge on {_config.host}:{_config.port}")
    uvicorn.run(create_app(_config), host=_config.host, port=_config.port)
