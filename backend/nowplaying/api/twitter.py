"""Twitter OAuth 2.0 (PKCE) routes"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from nowplaying.api.deps import get_http_client, get_store, get_twitter_config
from nowplaying.core.errors import OAuthFlowError, StoreError, UserNotFoundError
from nowplaying.core.security import SessionIdentity, require_session
from nowplaying.db.store import CredentialStore
from nowplaying.services.oauth_service import complete_twitter_auth, initiate_twitter_auth
from nowplaying.services.twitter_config import TwitterConfig

router = APIRouter(prefix="/api/twitter", tags=["twitter"])
logger = logging.getLogger(__name__)


@router.get("/start")
def start_twitter_auth(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    twitter_config: TwitterConfig = Depends(get_twitter_config)
):
    """Redirect to the Twitter authorization page"""
    try:
        auth_url = initiate_twitter_auth(identity.user_id, store, twitter_config)
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except OAuthFlowError as e:
        raise HTTPException(e.status_code, e.message)
    return RedirectResponse(auth_url, status_code=302)


@router.get("/callback")
def twitter_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    store: CredentialStore = Depends(get_store),
    http: httpx.Client = Depends(get_http_client),
    twitter_config: TwitterConfig = Depends(get_twitter_config)
):
    """Twitter redirect target - always redirects to the dashboard"""
    return RedirectResponse(
        complete_twitter_auth(code, state, error, store, http, twitter_config),
        status_code=302
    )


@router.delete("")
def disconnect_twitter(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store)
):
    """Remove the Twitter credentials"""
    try:
        store.disconnect_twitter(identity.user_id)
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except StoreError:
        raise HTTPException(500, "failed to disconnect")
    return {"message": "twitter disconnected"}
