"""Spotify login and session check routes"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from nowplaying.api.deps import get_spotify_client, get_store
from nowplaying.core.errors import AuthenticationError, OAuthFlowError
from nowplaying.core.security import (
    SessionConfig, get_session_config, get_session_cookie, set_session_cookie, validate_session_token
)
from nowplaying.db.store import CredentialStore
from nowplaying.schemas.api import AuthCheckResponse
from nowplaying.services.oauth_service import build_spotify_login_url, complete_spotify_login
from nowplaying.services.spotify_client import SpotifyClient

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.get("/check", response_model=AuthCheckResponse)
def check_auth(request: Request, config: SessionConfig = Depends(get_session_config)):
    """Report whether the session cookie is valid - never a 401"""
    try:
        claims = validate_session_token(config, get_session_cookie(request, config))
    except AuthenticationError:
        return AuthCheckResponse(authenticated=False)
    return AuthCheckResponse(
        authenticated=True,
        user_id=str(claims.user_id),
        spotify_user_id=claims.spotify_user_id,
    )


@router.get("/spotify")
def login_spotify(spotify: SpotifyClient = Depends(get_spotify_client)):
    """Start Spotify login"""
    return RedirectResponse(build_spotify_login_url(spotify), status_code=302)


@router.get("/spotify/callback")
def spotify_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    store: CredentialStore = Depends(get_store),
    spotify: SpotifyClient = Depends(get_spotify_client),
    config: SessionConfig = Depends(get_session_config)
):
    """Finish Spotify login: set the session cookie and go to the dashboard"""
    try:
        result = complete_spotify_login(code, error, store, spotify, config)
    except OAuthFlowError as e:
        if e.reason == "missing_code":
            return JSONResponse(status_code=400, content={"error": e.reason})
        logger.warning(f"Spotify login failed - Reason: {e.reason}, Retryable: {e.retryable}")
        return RedirectResponse(f"/login?error={e.reason}", status_code=302)

    response = RedirectResponse("/dashboard", status_code=302)
    set_session_cookie(response, config, result.session_token)
    return response
