"""Post what is currently playing to the user's linked Misskey / Twitter accounts

Entry point for GET /api/post/{token}. The capability token in the URL picks
the user; an optional Authorization header token adds a second factor.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from nowplaying.core.errors import HeaderTokenError, PostError, SpotifyAPIError, StoreError, UpstreamError
from nowplaying.core.logging import spotify_logger
from nowplaying.core.metrics import posts_counter, spotify_token_refresh_counter
from nowplaying.db.store import CredentialStore
from nowplaying.schemas.api import PostResult
from nowplaying.schemas.user import UserRecord
from nowplaying.services import platform_service
from nowplaying.services.share_service import (
    CONTENT_UNKNOWN, PLATFORM_MISSKEY, PLATFORM_TWITTER, build_post_text, parse_player_response
)
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.utils.tokens import verify_token_hash

logger = logging.getLogger(__name__)


def parse_post_target(value: Optional[str]) -> List[str]:
    """misskey, twitter, or both (the default for anything else)"""
    target = (value or "").lower()
    if target == PLATFORM_MISSKEY:
        return [PLATFORM_MISSKEY]
    if target == PLATFORM_TWITTER:
        return [PLATFORM_TWITTER]
    return [PLATFORM_MISSKEY, PLATFORM_TWITTER]


def authorize_header_token(user: UserRecord, authorization: Optional[str]) -> None:
    """Enforce the Bearer header token when the user has enabled it

    Raises:
        HeaderTokenError: header missing, malformed, or not matching the stored hash
    """
    if not user.api_header_token_enabled:
        return
    if not authorization:
        raise HeaderTokenError("authorization header required")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HeaderTokenError("invalid authorization header format")
    if not verify_token_hash(parts[1], user.api_header_token_hash or ""):
        raise HeaderTokenError("invalid token")


def fetch_player_with_refresh(user: UserRecord, store: CredentialStore, spotify: SpotifyClient) -> Optional[Dict[str, Any]]:
    """Read the player state, refreshing the access token at most once

    A 401 with a stored refresh token triggers exactly one refresh, the new
    tokens are persisted, and the player call is retried exactly once. The
    retry's failure is returned to the caller as-is.
    """
    try:
        data, _ = spotify.get_player_data(user.spotify_access_token)
        return data
    except SpotifyAPIError as e:
        if not e.is_unauthorized:
            raise PostError(f"spotify api error: {e.status_code}", 400)
    except UpstreamError:
        raise PostError("failed to get player data", 500)

    if not user.spotify_refresh_token:
        raise PostError("spotify token expired and no refresh token available", 401)

    try:
        tokens = spotify.refresh_token(user.spotify_refresh_token)
    except (SpotifyAPIError, UpstreamError) as e:
        spotify_token_refresh_counter.labels(status="error").inc()
        spotify_logger.warning(f"Spotify token refresh failed - User: {user.id}, Error: {e}")
        raise PostError("failed to refresh spotify token", 401)
    spotify_token_refresh_counter.labels(status="success").inc()

    # Spotify may keep the existing refresh token
    refresh_token = tokens.refresh_token or user.spotify_refresh_token
    try:
        store.update_spotify_token(user.id, tokens.access_token, refresh_token, tokens.expires_at)
    except StoreError:
        raise PostError("failed to update spotify token", 500)
    spotify_logger.info(f"Refreshed Spotify token - User: {user.id}")

    try:
        data, _ = spotify.get_player_data(tokens.access_token)
    except (SpotifyAPIError, UpstreamError) as e:
        spotify_logger.warning(f"Player request failed after token refresh - User: {user.id}, Error: {e}")
        raise PostError("failed to get player data after token refresh", 500)
    return data


def _post_to(platform: str, user: UserRecord, text: str, http: httpx.Client) -> str:
    try:
        if platform == PLATFORM_MISSKEY:
            if not user.misskey_connected:
                return "not connected"
            platform_service.create_misskey_note(http, user.misskey_instance_url, user.misskey_access_token, text)
        else:
            if not user.twitter_connected:
                return "not connected"
            platform_service.post_tweet(http, user.twitter_access_token, text)
    except UpstreamError as e:
        posts_counter.labels(platform=platform, status="error").inc()
        return f"error: {e}"
    posts_counter.labels(platform=platform, status="success").inc()
    return "success"


def post_now_playing(
    api_token: str,
    authorization: Optional[str],
    target: Optional[str],
    store: CredentialStore,
    spotify: SpotifyClient,
    http: httpx.Client
) -> PostResult:
    """Look up the user, read what is playing and post it to the chosen platforms

    Raises:
        PostError: request refused; status_code carries the HTTP status
        HeaderTokenError: header token gate failed
    """
    try:
        token = uuid.UUID(api_token)
    except ValueError:
        raise PostError("invalid token", 400)

    try:
        user = store.get_user_by_api_token(token)
    except StoreError:
        raise PostError("database error", 500)
    if user is None:
        raise PostError("token not found", 404)

    authorize_header_token(user, authorization)
    platforms = parse_post_target(target)

    if not user.spotify_access_token:
        raise PostError("spotify not connected", 400)

    data = fetch_player_with_refresh(user, store, spotify)
    track, content_type = parse_player_response(data)
    if content_type == CONTENT_UNKNOWN:
        return PostResult(success=False, message="nothing is playing")

    text = build_post_text(track, content_type)
    results = {platform: _post_to(platform, user, text, http) for platform in platforms}
    success = any(result == "success" for result in results.values())
    logger.info(f"Posted now playing - User: {user.id}, Results: {results}")
    return PostResult(success=success, message=text, results=results)
