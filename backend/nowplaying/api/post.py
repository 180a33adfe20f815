"""Token-authenticated posting endpoint for automation"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from nowplaying.api.deps import get_http_client, get_spotify_client, get_store
from nowplaying.core.errors import HeaderTokenError, PostError
from nowplaying.db.store import CredentialStore
from nowplaying.schemas.api import PostResult
from nowplaying.services.post_service import post_now_playing
from nowplaying.services.spotify_client import SpotifyClient

router = APIRouter(prefix="/api/post", tags=["post"])
logger = logging.getLogger(__name__)


@router.get("/{token}", response_model=PostResult)
def post(
    token: str,
    target: Optional[str] = None,
    authorization: Optional[str] = Header(None),
    store: CredentialStore = Depends(get_store),
    spotify: SpotifyClient = Depends(get_spotify_client),
    http: httpx.Client = Depends(get_http_client)
):
    """Post the current track to Misskey and/or Twitter (?target=misskey|twitter|both)"""
    try:
        return post_now_playing(token, authorization, target, store, spotify, http)
    except HeaderTokenError as e:
        return JSONResponse(status_code=401, content=PostResult(success=False, message=e.message).model_dump())
    except PostError as e:
        logger.info(f"Post refused - Status: {e.status_code}, Reason: {e.message}")
        return JSONResponse(status_code=e.status_code, content=PostResult(success=False, message=e.message).model_dump())
