"""JWT utilities for bridge tokens.

Provides stateless token signing and validation using PyJWT, plus PKCE helpers.
Bridge tokens are never looked up server-side: authority comes entirely from
the signature and the exp claim checked at verification time.
"""

import base64
import hashlib
import hmac
import os
import secrets
import logging
import time
from pathlib import Path
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
REFRESH_TOKEN_TYPE = "refresh_token"

# Secret key storage
_jwt_secret: Optional[str] = None
SECRET_FILE = Path.home() / ".mcp-bridge" / "jwt_secret"


def configure_secret(secret: Optional[str]) -> None:
    """Set the signing secret explicitly (None resets to lazy resolution)."""
    global _jwt_secret
    _jwt_secret = secret


def _get_or_create_secret() -> str:
    """Get JWT secret from the environment or file, creating one if needed.

    The generated secret is stored in ~/.mcp-bridge/jwt_secret so tokens
    remain valid across server restarts.
    """
    global _jwt_secret

    if _jwt_secret:
        return _jwt_secret

    env_secret = os.getenv("JWT_SECRET")
    if env_secret:
        _jwt_secret = env_secret
        logger.info("[JWT] Using JWT_SECRET from environment")
        return _jwt_secret

    if SECRET_FILE.exists():
        try:
            _jwt_secret = SECRET_FILE.read_text().strip()
            if _jwt_secret:
                logger.info("[JWT] Loaded JWT secret from file")
                return _jwt_secret
        except IOError:
            logger.warning(f"[JWT] Could not read {SECRET_FILE}, generating a new secret")

    _jwt_secret = secrets.token_urlsafe(64)

    try:
        SECRET_FILE.parent.mkdir(parents=True, exist_ok=True)
        SECRET_FILE.write_text(_jwt_secret)
        os.chmod(SECRET_FILE, 0o600)  # Owner read/write only
        logger.info("[JWT] Generated and saved new JWT secret")
    except IOError as e:
        logger.warning(f"[JWT] Could not save JWT secret to file: {e}")

    return _jwt_secret


def sign_token(claims: dict) -> str:
    """Sign a claim set. The caller supplies exp; iat is set here.

    Args:
        claims: Claims to embed, including nested provider blocks and exp

    Returns:
        A signed JWT token string
    """
    if "exp" not in claims:
        raise ValueError("claims must include exp")
    payload = dict(claims)
    payload.setdefault("iat", int(time.time()))
    return jwt.encode(payload, _get_or_create_secret(), algorithm=JWT_ALGORITHM)


def _decode(token: str, issuer: Optional[str]) -> dict:
    kwargs = {}
    if issuer:
        kwargs["issuer"] = issuer
    return jwt.decode(
        token,
        _get_or_create_secret(),
        algorithms=[JWT_ALGORITHM],
        # aud is the caller-requested resource and is not known at this layer
        options={"require": ["exp", "sub"], "verify_aud": False},
        **kwargs,
    )


def verify_access_token(token: str, issuer: str = None) -> Optional[dict]:
    """Verify and decode a bridge access token.

    Returns:
        The decoded payload if valid, None otherwise. Refresh tokens are
        never accepted here.
    """
    try:
        payload = _decode(token, issuer)
    except jwt.ExpiredSignatureError:
        logger.debug("[JWT] Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"[JWT] Invalid access token: {e}")
        return None

    if payload.get("type") == REFRESH_TOKEN_TYPE:
        logger.debug("[JWT] Refresh token presented where an access token is expected")
        return None
    return payload


def verify_refresh_token(token: str, issuer: str = None) -> Optional[dict]:
    """Verify and decode a bridge refresh token.

    Returns:
        The decoded payload if valid, None otherwise.
    """
    try:
        payload = _decode(token, issuer)
    except jwt.ExpiredSignatureError:
        logger.debug("[JWT] Refresh token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"[JWT] Invalid refresh token: {e}")
        return None

    if payload.get("type") != REFRESH_TOKEN_TYPE:
        logger.debug("[JWT] Token is not a refresh token")
        return None
    return payload


def peek_claims(token: str) -> Optional[dict]:
    """Read the claims of a JWT without verifying it.

    Only for tokens whose origin is already trusted (our own stored tokens)
    or for best-effort inspection of foreign ones. Returns None for opaque or
    malformed tokens.
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None


def peek_expiration(token: str) -> Optional[int]:
    """Read the exp claim of a JWT without verifying it."""
    payload = peek_claims(token)
    if payload is None:
        return None
    exp = payload.get("exp")
    return exp if isinstance(exp, int) else None


def describe_token(token: Optional[str], max_length: int = 20) -> str:
    """Render a token for logs: truncated, with expiry info when readable."""
    if not token:
        return "none"
    truncated = token[:max_length] + "..."
    exp = peek_expiration(token)
    if exp is None:
        return f"{truncated} (no expiration info)"

    diff = exp - int(time.time())
    hours, minutes = abs(diff) // 3600, (abs(diff) % 3600) // 60
    if hours:
        span = f"{hours}h {minutes}m"
    elif minutes:
        span = f"{minutes}m"
    else:
        span = f"{abs(diff)}s"
    return f"{truncated} (expires in {span})" if diff > 0 else f"{truncated} (expired {span} ago)"


# ============== PKCE ==============

def generate_code_verifier() -> str:
    """Generate a cryptographically random PKCE code verifier."""
    return secrets.token_urlsafe(32)


def generate_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    return base64.urlsafe_b64encode(
        hashlib.sha256(code_verifier.encode()).digest()
    ).rstrip(b"=").decode()


def verify_code_challenge(code_verifier: str, code_challenge: str) -> bool:
    """Check a verifier against an S256 challenge using constant-time comparison."""
    return hmac.compare_digest(generate_code_challenge(code_verifier), code_challenge)
