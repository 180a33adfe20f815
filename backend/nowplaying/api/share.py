"""Share-intent flow (/note, /tweet) and the status probe

These routes need no account: a Spotify login stores the access token in an
access_token cookie, and the home routes redirect to a prefilled share page.
"""
import logging
import time
from http import HTTPStatus
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from nowplaying.api.deps import get_cipher, get_spotify_client
from nowplaying.core.errors import OAuthFlowError, SpotifyAPIError, UpstreamError
from nowplaying.services.oauth_service import build_share_login_url, complete_share_login
from nowplaying.services.share_service import PLATFORM_MISSKEY, PLATFORM_TWITTER, resolve_share_url
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.utils.encryption import TokenCipher

router = APIRouter(tags=["share"])
logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"
HOME_PATHS = {PLATFORM_MISSKEY: "/note/home", PLATFORM_TWITTER: "/tweet/home"}


def _login(platform: str, spotify: SpotifyClient) -> RedirectResponse:
    return RedirectResponse(build_share_login_url(spotify, platform), status_code=302)


def _callback(code: Optional[str], platform: str, spotify: SpotifyClient, cipher: Optional[TokenCipher]):
    try:
        cookie_value = complete_share_login(code, platform, spotify, cipher)
    except OAuthFlowError as e:
        if e.reason == "missing_code":
            return PlainTextResponse(e.message, status_code=400)
        logger.warning(f"Share login failed - Platform: {platform}, Reason: {e.reason}")
        return PlainTextResponse("OAuth callback failed", status_code=500)

    response = RedirectResponse(HOME_PATHS[platform], status_code=302)
    response.set_cookie(ACCESS_TOKEN_COOKIE, cookie_value, httponly=True)
    return response


def _home(request: Request, platform: str, spotify: SpotifyClient, cipher: Optional[TokenCipher]):
    access_cookie = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not access_cookie:
        return PlainTextResponse("Access token not found. Please login first.", status_code=401)

    try:
        share_url = resolve_share_url(access_cookie, platform, spotify, cipher)
    except SpotifyAPIError as e:
        try:
            phrase = HTTPStatus(e.status_code).phrase
        except ValueError:
            phrase = ""
        return PlainTextResponse(f"{e.status_code}: {phrase}", status_code=200)
    except UpstreamError as e:
        return JSONResponse(status_code=500, content={"error": e.message})

    if share_url is None:
        return PlainTextResponse("Nothing is currently playing.", status_code=200)
    return RedirectResponse(share_url, status_code=302)


@router.get("/note")
def note_login(spotify: SpotifyClient = Depends(get_spotify_client)):
    return _login(PLATFORM_MISSKEY, spotify)


@router.get("/note/callback")
def note_callback(
    code: Optional[str] = None,
    spotify: SpotifyClient = Depends(get_spotify_client),
    cipher: Optional[TokenCipher] = Depends(get_cipher)
):
    return _callback(code, PLATFORM_MISSKEY, spotify, cipher)


@router.get("/note/home")
def note_home(
    request: Request,
    spotify: SpotifyClient = Depends(get_spotify_client),
    cipher: Optional[TokenCipher] = Depends(get_cipher)
):
    """Redirect to the Misskey share page for the current track"""
    return _home(request, PLATFORM_MISSKEY, spotify, cipher)


@router.get("/tweet")
def tweet_login(spotify: SpotifyClient = Depends(get_spotify_client)):
    return _login(PLATFORM_TWITTER, spotify)


@router.get("/tweet/callback")
def tweet_callback(
    code: Optional[str] = None,
    spotify: SpotifyClient = Depends(get_spotify_client),
    cipher: Optional[TokenCipher] = Depends(get_cipher)
):
    return _callback(code, PLATFORM_TWITTER, spotify, cipher)


@router.get("/tweet/home")
def tweet_home(
    request: Request,
    spotify: SpotifyClient = Depends(get_spotify_client),
    cipher: Optional[TokenCipher] = Depends(get_cipher)
):
    """Redirect to the X/Twitter intent page for the current track"""
    return _home(request, PLATFORM_TWITTER, spotify, cipher)


@router.get("/status")
def status():
    start = time.monotonic()
    return {"status_code": 200, "response_time": int((time.monotonic() - start) * 1000)}
