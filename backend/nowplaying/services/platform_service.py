"""Misskey and Twitter HTTP calls - MiAuth check, OAuth tokens, profiles and posting

All functions take an injected httpx.Client. Transport failures are raised as
UpstreamError with no upstream status; non-2xx responses as UpstreamError with
the status; unparseable bodies as ValueError.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx

from nowplaying.core.config import (
    TWITTER_TOKEN_URL, TWITTER_TWEETS_URL, TWITTER_USERS_ME_URL, settings
)
from nowplaying.core.errors import UpstreamError
from nowplaying.core.logging import misskey_logger, twitter_logger


def _send(http: httpx.Client, platform: str, method: str, url: str, timeout: float, **kwargs) -> httpx.Response:
    try:
        return http.request(method, url, timeout=timeout, **kwargs)
    except httpx.HTTPError as e:
        raise UpstreamError(f"{platform} request failed: {type(e).__name__}: {e}")


def _json(response: httpx.Response, platform: str) -> Dict:
    try:
        payload = response.json()
    except ValueError as e:
        raise ValueError(f"{platform} returned invalid JSON: {e}")
    if not isinstance(payload, dict):
        raise ValueError(f"{platform} returned unexpected JSON: {type(payload).__name__}")
    return payload


# ============================================================================
# MISSKEY
# ============================================================================

@dataclass
class MiAuthCheckResult:
    ok: bool
    token: str
    user_id: str
    username: str


@dataclass
class MisskeyProfile:
    id: str
    username: str
    avatar_url: Optional[str] = None


def check_miauth_session(http: httpx.Client, instance_url: str, session_id: str) -> MiAuthCheckResult:
    """Exchange a MiAuth session id for an access token"""
    response = _send(
        http, "misskey", "POST", f"{instance_url}/api/miauth/{session_id}/check",
        timeout=settings.TOKEN_EXCHANGE_TIMEOUT,
        json={},
    )
    payload = _json(response, "misskey")
    user = payload.get("user") or {}
    if not isinstance(user, dict):
        raise ValueError("unexpected miauth check response")
    return MiAuthCheckResult(
        ok=bool(payload.get("ok")),
        token=payload.get("token") or "",
        user_id=user.get("id") or "",
        username=user.get("username") or "",
    )


def fetch_misskey_profile(http: httpx.Client, instance_url: str, access_token: str) -> MisskeyProfile:
    response = _send(
        http, "misskey", "POST", f"{instance_url}/api/i",
        timeout=settings.PROFILE_FETCH_TIMEOUT,
        json={"i": access_token},
    )
    if response.status_code != 200:
        raise UpstreamError(f"misskey api error: {response.status_code} - {response.text}", status_code=response.status_code)
    payload = _json(response, "misskey")
    return MisskeyProfile(
        id=payload.get("id") or "",
        username=payload.get("username") or "",
        avatar_url=payload.get("avatarUrl"),
    )


def create_misskey_note(http: httpx.Client, instance_url: str, access_token: str, text: str) -> None:
    response = _send(
        http, "misskey", "POST", f"{instance_url}/api/notes/create",
        timeout=settings.TOKEN_EXCHANGE_TIMEOUT,
        json={"i": access_token, "text": text, "visibility": "public"},
    )
    if response.status_code not in (200, 201):
        misskey_logger.warning(f"Misskey note failed - Instance: {instance_url}, Status: {response.status_code}")
        raise UpstreamError(f"misskey api error: {response.status_code} - {response.text}", status_code=response.status_code)


# ============================================================================
# TWITTER
# ============================================================================

@dataclass
class TwitterTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int

    @property
    def expires_at(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.expires_in)


@dataclass
class TwitterProfile:
    id: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None
    profile_image_url: Optional[str] = None


def _twitter_token_request(http: httpx.Client, data: Dict[str, str], client_id: str, client_secret: str) -> TwitterTokens:
    response = _send(
        http, "twitter", "POST", TWITTER_TOKEN_URL,
        timeout=settings.TOKEN_EXCHANGE_TIMEOUT,
        data=data,
        auth=(client_id, client_secret),
    )
    if response.status_code != 200:
        twitter_logger.warning(f"Twitter token request failed - Status: {response.status_code}")
        raise UpstreamError(f"twitter token error: {response.status_code} - {response.text}", status_code=response.status_code)

    payload = _json(response, "twitter")
    if not payload.get("access_token"):
        raise ValueError("twitter token response has no access_token")
    return TwitterTokens(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_in=int(payload.get("expires_in") or 0),
    )


def exchange_twitter_code(
    http: httpx.Client,
    code: str,
    code_verifier: str,
    redirect_uri: str,
    client_id: str,
    client_secret: str
) -> TwitterTokens:
    """Exchange an authorization code plus PKCE verifier (HTTP Basic client auth)"""
    return _twitter_token_request(http, {
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }, client_id, client_secret)


def refresh_twitter_token(http: httpx.Client, refresh_token: str, client_id: str, client_secret: str) -> TwitterTokens:
    return _twitter_token_request(http, {
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }, client_id, client_secret)


def fetch_twitter_profile(http: httpx.Client, access_token: str) -> TwitterProfile:
    response = _send(
        http, "twitter", "GET", TWITTER_USERS_ME_URL,
        timeout=settings.PROFILE_FETCH_TIMEOUT,
        params={"user.fields": "profile_image_url"},
        headers={"Authorization": f"Bearer {access_token}"},
    )
    if response.status_code != 200:
        raise UpstreamError(f"twitter api error: {response.status_code} - {response.text}", status_code=response.status_code)
    data = _json(response, "twitter").get("data") or {}
    return TwitterProfile(
        id=data.get("id"),
        name=data.get("name"),
        username=data.get("username"),
        profile_image_url=data.get("profile_image_url"),
    )


def post_tweet(http: httpx.Client, access_token: str, text: str) -> None:
    response = _send(
        http, "twitter", "POST", TWITTER_TWEETS_URL,
        timeout=settings.TOKEN_EXCHANGE_TIMEOUT,
        json={"text": text},
        headers={"Authorization": f"Bearer {access_token}"},
    )
    if response.status_code not in (200, 201):
        twitter_logger.warning(f"Tweet failed - Status: {response.status_code}")
        raise UpstreamError(f"twitter api error: {response.status_code} - {response.text}", status_code=response.status_code)
