"""Session tokens, session cookies and authentication dependencies

Sessions are HS256 JWTs carried in an HttpOnly cookie. check_session() is the
pure gate used by the require_session dependency; the 401 response itself is
produced by session_auth_exception_handler so expired sessions can also clear
the cookie.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from nowplaying.core.config import DEFAULT_JWT_SECRET, Settings, settings
from nowplaying.core.errors import (
    ExpiredTokenError, InvalidTokenError, MissingTokenError, SessionAuthError
)
from nowplaying.core.logging import security_logger

JWT_ALGORITHM = "HS256"

REASON_UNAUTHORIZED = "unauthorized"
REASON_INVALID_SESSION = "invalid session"
REASON_SESSION_EXPIRED = "session expired"


@dataclass(frozen=True)
class SessionConfig:
    """Immutable signing/cookie configuration passed down from process start"""
    secret_key: str
    token_duration: timedelta = timedelta(days=7)
    cookie_name: str = "session_token"
    secure_cookie: bool = False

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "SessionConfig":
        secret = app_settings.JWT_SECRET
        if not secret:
            security_logger.warning(
                "JWT_SECRET is not set - signing sessions with the built-in development secret. "
                "Anyone can forge sessions for this deployment until JWT_SECRET is configured."
            )
            secret = DEFAULT_JWT_SECRET
        return cls(
            secret_key=secret,
            token_duration=timedelta(hours=app_settings.JWT_TOKEN_DURATION_HOURS),
            cookie_name=app_settings.SESSION_COOKIE_NAME,
            secure_cookie=app_settings.ENVIRONMENT == "production",
        )


@dataclass(frozen=True)
class SessionClaims:
    user_id: uuid.UUID
    spotify_user_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class SessionIdentity:
    """Identity injected into request.state for downstream handlers"""
    user_id: uuid.UUID
    spotify_user_id: str


_session_config: Optional[SessionConfig] = None


def get_session_config() -> SessionConfig:
    """Dependency: process-wide session configuration, built on first use"""
    global _session_config
    if _session_config is None:
        _session_config = SessionConfig.from_settings(settings)
    return _session_config


# ============================================================================
# ISSUE / VALIDATE
# ============================================================================

def issue_session_token(config: SessionConfig, user_id: uuid.UUID, spotify_user_id: str) -> str:
    """Sign a session token for a user"""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": str(user_id),
        "spotify_user_id": spotify_user_id,
        "iat": now,
        "nbf": now,
        "exp": now + config.token_duration,
    }
    return jwt.encode(payload, config.secret_key, algorithm=JWT_ALGORITHM)


def validate_session_token(config: SessionConfig, token: str) -> SessionClaims:
    """Verify a session token and return its claims

    Raises:
        ExpiredTokenError: signature valid but the token is past its expiry
        InvalidTokenError: anything else (structure, signature, algorithm, claims)
    """
    try:
        payload = jwt.decode(
            token,
            config.secret_key,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "iat", "nbf"]},
        )
    except jwt.ExpiredSignatureError:
        raise ExpiredTokenError()
    except jwt.InvalidTokenError as e:
        raise InvalidTokenError(details={"original_error": type(e).__name__})

    try:
        user_id = uuid.UUID(str(payload["user_id"]))
        spotify_user_id = payload["spotify_user_id"]
    except (KeyError, ValueError, TypeError):
        raise InvalidTokenError("invalid token claims")
    if not isinstance(spotify_user_id, str):
        raise InvalidTokenError("invalid token claims")

    return SessionClaims(
        user_id=user_id,
        spotify_user_id=spotify_user_id,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


# ============================================================================
# COOKIES
# ============================================================================

def set_session_cookie(response: Response, config: SessionConfig, token: str) -> None:
    """Set the session cookie with max-age matching the token lifetime"""
    response.set_cookie(
        key=config.cookie_name,
        value=token,
        path="/",
        httponly=True,
        secure=config.secure_cookie,
        samesite="lax",
        max_age=int(config.token_duration.total_seconds()),
    )


def clear_session_cookie(response: Response, config: SessionConfig) -> None:
    """Expire the session cookie immediately"""
    response.delete_cookie(
        key=config.cookie_name,
        path="/",
        httponly=True,
        secure=config.secure_cookie,
        samesite="lax",
    )


def get_session_cookie(request: Request, config: SessionConfig) -> str:
    token = request.cookies.get(config.cookie_name)
    if not token:
        raise MissingTokenError()
    return token


# ============================================================================
# SESSION GATE
# ============================================================================

def check_session(cookie_value: Optional[str], config: SessionConfig) -> SessionIdentity:
    """Decide whether a request may continue, based only on its cookie

    Raises:
        SessionAuthError: with the reason returned to the client; clear_cookie
            is set for expired sessions
    """
    if not cookie_value:
        raise SessionAuthError(REASON_UNAUTHORIZED)
    try:
        claims = validate_session_token(config, cookie_value)
    except ExpiredTokenError:
        raise SessionAuthError(REASON_SESSION_EXPIRED, clear_cookie=True)
    except InvalidTokenError:
        raise SessionAuthError(REASON_INVALID_SESSION)
    return SessionIdentity(user_id=claims.user_id, spotify_user_id=claims.spotify_user_id)


def require_session(request: Request) -> SessionIdentity:
    """Dependency: require a valid session cookie, return the caller's identity"""
    config = get_session_config()
    try:
        identity = check_session(request.cookies.get(config.cookie_name), config)
    except SessionAuthError as e:
        security_logger.info(f"Session rejected - Reason: {e.reason}, Path: {request.url.path}")
        raise
    request.state.user_id = identity.user_id
    request.state.spotify_user_id = identity.spotify_user_id
    return identity


async def session_auth_exception_handler(request: Request, exc: SessionAuthError):
    """Turn a rejected session into 401 {"error": reason}"""
    response = JSONResponse(status_code=401, content={"error": exc.reason})
    if exc.clear_cookie:
        clear_session_cookie(response, get_session_config())
    return response
