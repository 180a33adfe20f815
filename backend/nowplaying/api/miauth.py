"""Misskey MiAuth routes"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from nowplaying.api.deps import get_http_client, get_store
from nowplaying.core.errors import OAuthFlowError, StoreError, UserNotFoundError
from nowplaying.core.security import SessionIdentity, require_session
from nowplaying.db.store import CredentialStore
from nowplaying.schemas.api import AuthURLResponse, MiAuthStartRequest
from nowplaying.services.oauth_service import complete_misskey_auth, initiate_misskey_auth

router = APIRouter(prefix="/api/miauth", tags=["misskey"])
logger = logging.getLogger(__name__)


@router.post("/start", response_model=AuthURLResponse)
def start_miauth(
    request_data: MiAuthStartRequest,
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store)
):
    """Create a MiAuth session and return the instance's authorization URL"""
    try:
        return AuthURLResponse(auth_url=initiate_misskey_auth(identity.user_id, request_data.instance_url, store))
    except OAuthFlowError as e:
        raise HTTPException(e.status_code, e.reason)


@router.get("/callback")
def miauth_callback(
    session: Optional[str] = None,
    store: CredentialStore = Depends(get_store),
    http: httpx.Client = Depends(get_http_client)
):
    """MiAuth redirect target - always redirects to the dashboard"""
    return RedirectResponse(complete_misskey_auth(session, store, http), status_code=302)


@router.delete("")
def disconnect_misskey(
    identity: SessionIdentity = Depends(require_session),
    store: CredentialStore = Depends(get_store)
):
    """Remove the Misskey credentials"""
    try:
        store.disconnect_misskey(identity.user_id)
    except UserNotFoundError:
        raise HTTPException(404, "user not found")
    except StoreError:
        raise HTTPException(500, "failed to disconnect")
    return {"message": "misskey disconnected"}
