"""Account, API token and configuration routes"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from nowplaying.api.deps import get_spotify_client, get_store, get_twitter_config
from nowplaying.core.errors import StoreError, UserNotFoundError
from nowplaying.core.security import SessionConfig, SessionIdentity, clear_session_cookie, get_session_config, require_session
from nowplaying.db.store import CredentialStore
from nowplaying.schemas.api import APIURLTokenResponse, ConfigResponse, HeaderTokenResponse, UserInfoResponse
from nowplaying.services.settings_service import generate_header_token, get_app_config, get_user_info
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.services.twitter_config import TwitterConfig

router = APIRouter(prefix="/api", tags=["settings"])
logger = logging.getLogger(__name__)


@router.get("/me", response_model=UserInfoResponse)
def me(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    spotify: SpotifyClient = Depends(get_spotify_client)
):
    """Current user's linked accounts and API settings"""
    try:
        return get_user_info(identity.user_id, store, spotify)
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except StoreError:
        raise HTTPException(500, "failed to get user")


@router.post("/logout")
def logout(
    identity: SessionIdentity = Depends(require_session),
    config: SessionConfig = Depends(get_session_config)
):
    """Clear the session cookie"""
    response = JSONResponse({"message": "logged out"})
    clear_session_cookie(response, config)
    return response


@router.get("/config", response_model=ConfigResponse)
def app_config(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    twitter_config: TwitterConfig = Depends(get_twitter_config)
):
    """Twitter availability and eligibility for the dashboard"""
    try:
        return get_app_config(identity.user_id, store, twitter_config)
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except StoreError:
        raise HTTPException(500, "failed to get user")


@router.post("/settings/header-token", response_model=HeaderTokenResponse)
def create_header_token(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store)
):
    """Generate a header token - the plaintext is returned only once"""
    try:
        return generate_header_token(identity.user_id, store)
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except StoreError:
        raise HTTPException(500, "failed to save token")


@router.delete("/settings/header-token")
def disable_header_token(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store)
):
    """Turn off header-token enforcement and forget the hash"""
    try:
        store.disable_api_header_token(identity.user_id)
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except StoreError:
        raise HTTPException(500, "failed to disable token")
    return {"message": "header token disabled"}


@router.post("/settings/api-url-token/regenerate", response_model=APIURLTokenResponse)
def regenerate_api_url_token(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store)
):
    """Issue a new post URL token; the old URL stops working"""
    try:
        return APIURLTokenResponse(api_url_token=store.regenerate_api_url_token(identity.user_id))
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except StoreError:
        raise HTTPException(500, "failed to regenerate token")
