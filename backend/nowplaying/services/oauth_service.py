"""OAuth service - orchestration of the Spotify, Misskey (MiAuth) and Twitter (PKCE) flows

Login-style flows raise OAuthFlowError with a short reason code. The Misskey
and Twitter callbacks are reached by unauthenticated browsers, so they never
raise: they return the dashboard URL to redirect to, tagged with either an
error reason or a success marker.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode, urlparse

import httpx

from nowplaying.core.config import MISSKEY_PERMISSIONS, TWITTER_AUTH_URL, TWITTER_SCOPES, settings
from nowplaying.core.errors import (
    OAuthFlowError, SpotifyAPIError, StoreError, TwitterNotAvailableError,
    TwitterNotEligibleError, UpstreamError, UserNotFoundError, best_effort
)
from nowplaying.core.logging import misskey_logger, spotify_logger, twitter_logger
from nowplaying.core.metrics import oauth_callbacks_counter
from nowplaying.core.security import SessionConfig, issue_session_token
from nowplaying.db.store import CredentialStore
from nowplaying.schemas.user import UserRecord
from nowplaying.services import platform_service
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.services.twitter_config import TwitterConfig
from nowplaying.utils.encryption import TokenCipher, encrypt_token
from nowplaying.utils.tokens import generate_pkce_challenge, generate_pkce_verifier, generate_random_token

logger = logging.getLogger(__name__)

SPOTIFY_CALLBACK_PATH = "/api/auth/spotify/callback"
MIAUTH_CALLBACK_PATH = "/api/miauth/callback"
TWITTER_CALLBACK_PATH = "/api/twitter/callback"
SHARE_CALLBACK_PATHS = {"misskey": "/note/callback", "twitter": "/tweet/callback"}


def callback_url(path: str) -> str:
    return f"{settings.BASE_URL.rstrip('/')}{path}"


def dashboard_error(reason: str) -> str:
    return f"/dashboard?error={reason}"


def dashboard_success(marker: str) -> str:
    return f"/dashboard?success={marker}"


def _classify_exchange_error(e: Exception) -> OAuthFlowError:
    """A rejected grant is final; provider outages can be retried by starting over"""
    if isinstance(e, SpotifyAPIError) and not e.is_retryable:
        return OAuthFlowError("token_exchange_failed", str(e))
    return OAuthFlowError("provider_unavailable", str(e), retryable=True, status_code=502)


# ============================================================================
# SPOTIFY LOGIN
# ============================================================================

@dataclass
class SpotifyLoginResult:
    user: UserRecord
    session_token: str


def build_spotify_login_url(spotify: SpotifyClient) -> str:
    return spotify.build_authorize_url(callback_url(SPOTIFY_CALLBACK_PATH))


def complete_spotify_login(
    code: Optional[str],
    error: Optional[str],
    store: CredentialStore,
    spotify: SpotifyClient,
    session_config: SessionConfig
) -> SpotifyLoginResult:
    """Exchange the code, fetch the profile, upsert the user and issue a session"""
    if error:
        oauth_callbacks_counter.labels(platform="spotify", status="denied").inc()
        raise OAuthFlowError("spotify_auth_denied", f"provider returned error: {error}")
    if not code:
        oauth_callbacks_counter.labels(platform="spotify", status="missing_code").inc()
        raise OAuthFlowError("missing_code", "Code parameter is missing.")

    try:
        tokens = spotify.exchange_code(code, callback_url(SPOTIFY_CALLBACK_PATH))
    except (SpotifyAPIError, UpstreamError) as e:
        oauth_callbacks_counter.labels(platform="spotify", status="error").inc()
        spotify_logger.warning(f"Spotify code exchange failed: {e}")
        raise _classify_exchange_error(e)

    try:
        profile = spotify.get_current_user(tokens.access_token)
        spotify_user_id = profile["id"]
    except (SpotifyAPIError, UpstreamError, ValueError, KeyError, TypeError) as e:
        oauth_callbacks_counter.labels(platform="spotify", status="error").inc()
        spotify_logger.warning(f"Spotify profile fetch failed: {e}")
        raise OAuthFlowError("profile_fetch_failed", str(e))

    try:
        user = store.create_or_update_user(
            spotify_user_id, tokens.access_token, tokens.refresh_token or "", tokens.expires_at
        )
    except StoreError as e:
        oauth_callbacks_counter.labels(platform="spotify", status="error").inc()
        raise OAuthFlowError("user_creation_failed", str(e), status_code=500)

    session_token = issue_session_token(session_config, user.id, user.spotify_user_id)
    oauth_callbacks_counter.labels(platform="spotify", status="success").inc()
    spotify_logger.info(f"Spotify login completed for {spotify_user_id}")
    return SpotifyLoginResult(user=user, session_token=session_token)


# ============================================================================
# LEGACY SHARE LOGIN (/note, /tweet)
# ============================================================================

def build_share_login_url(spotify: SpotifyClient, platform: str) -> str:
    return spotify.build_authorize_url(callback_url(SHARE_CALLBACK_PATHS[platform]))


def complete_share_login(
    code: Optional[str],
    platform: str,
    spotify: SpotifyClient,
    cipher: Optional[TokenCipher]
) -> str:
    """Exchange the code and return the value for the access_token cookie"""
    if not code:
        oauth_callbacks_counter.labels(platform=platform, status="missing_code").inc()
        raise OAuthFlowError("missing_code", "Code parameter is missing.")

    try:
        tokens = spotify.exchange_code(code, callback_url(SHARE_CALLBACK_PATHS[platform]))
    except (SpotifyAPIError, UpstreamError) as e:
        oauth_callbacks_counter.labels(platform=platform, status="error").inc()
        spotify_logger.warning(f"Spotify code exchange failed for {platform} share login: {e}")
        raise _classify_exchange_error(e)

    oauth_callbacks_counter.labels(platform=platform, status="success").inc()
    return encrypt_token(tokens.access_token, cipher)


# ============================================================================
# MISSKEY (MiAuth)
# ============================================================================

def normalize_instance_url(instance_url: str) -> str:
    """Require a value, default the scheme to https, drop a trailing slash"""
    value = (instance_url or "").strip()
    if not value:
        raise OAuthFlowError("instance_url_required", "instance_url is required")
    if not value.startswith(("http://", "https://")):
        value = f"https://{value}"
    return value.rstrip("/")


def initiate_misskey_auth(user_id: uuid.UUID, instance_url: str, store: CredentialStore) -> str:
    """Persist a MiAuth session and return the instance's authorization URL"""
    instance = normalize_instance_url(instance_url)
    session_id = uuid.uuid4()

    try:
        store.create_miauth_session(user_id, session_id, instance)
    except StoreError as e:
        raise OAuthFlowError("session_create_failed", str(e), status_code=500)

    query = urlencode({
        "name": settings.APP_NAME or "Spotify NowPlaying",
        "callback": callback_url(MIAUTH_CALLBACK_PATH),
        "permission": ",".join(MISSKEY_PERMISSIONS),
    }, safe=",")
    misskey_logger.info(f"MiAuth started - User: {user_id}, Instance: {instance}")
    return f"{instance}/miauth/{session_id}?{query}"


def complete_misskey_auth(session_param: Optional[str], store: CredentialStore, http: httpx.Client) -> str:
    """Finish MiAuth and return the dashboard URL to redirect to"""
    reason = _complete_misskey_auth(session_param, store, http)
    status = "success" if reason is None else reason
    oauth_callbacks_counter.labels(platform="misskey", status=status).inc()
    if reason:
        misskey_logger.warning(f"MiAuth callback failed - Reason: {reason}")
        return dashboard_error(reason)
    return dashboard_success("misskey_connected")


def _complete_misskey_auth(session_param: Optional[str], store: CredentialStore, http: httpx.Client) -> Optional[str]:
    if not session_param:
        return "missing_session"
    try:
        session_id = uuid.UUID(session_param)
    except ValueError:
        return "invalid_session"

    try:
        session = store.get_miauth_session(session_id)
    except StoreError:
        return "session_error"
    if session is None:
        return "session_not_found"

    try:
        check = platform_service.check_miauth_session(http, session.instance_url, str(session_id))
    except UpstreamError:
        return "check_failed"
    except ValueError:
        return "parse_failed"
    if not check.ok or not check.token:
        return "auth_failed"

    try:
        profile = platform_service.fetch_misskey_profile(http, session.instance_url, check.token)
    except (UpstreamError, ValueError) as e:
        misskey_logger.warning(f"Misskey profile fetch failed, using check response identity: {e}")
        profile = platform_service.MisskeyProfile(id=check.user_id, username=check.username)

    host = urlparse(session.instance_url).netloc or session.instance_url

    try:
        store.update_misskey_token(
            session.user_id, session.instance_url, check.token,
            profile.id, profile.username, profile.avatar_url, host
        )
    except StoreError:
        return "save_failed"

    best_effort(lambda: store.delete_miauth_session(session_id), "delete consumed miauth session")
    misskey_logger.info(f"Misskey connected - User: {session.user_id}, Host: {host}")
    return None


# ============================================================================
# TWITTER (OAuth 2.0 + PKCE)
# ============================================================================

def initiate_twitter_auth(user_id: uuid.UUID, store: CredentialStore, twitter_config: TwitterConfig) -> str:
    """Check eligibility, persist a PKCE session and return the authorize URL"""
    if not twitter_config.is_available():
        raise TwitterNotAvailableError()

    try:
        user = store.get_user_by_id(user_id)
    except StoreError as e:
        raise OAuthFlowError("user_lookup_failed", str(e), status_code=500)
    if user is None:
        raise UserNotFoundError(details={"user_id": str(user_id)})

    eligibility = twitter_config.check_eligibility(user.misskey_connected, user.misskey_instance_url)
    if not eligibility.eligible:
        raise TwitterNotEligibleError(eligibility.reason)

    verifier = generate_pkce_verifier()
    challenge = generate_pkce_challenge(verifier)
    state = generate_random_token(16)

    try:
        store.create_twitter_pkce_session(user_id, state, verifier)
    except StoreError as e:
        raise OAuthFlowError("session_create_failed", str(e), status_code=500)

    query = urlencode({
        "response_type": "code",
        "client_id": twitter_config.client_id,
        "redirect_uri": callback_url(TWITTER_CALLBACK_PATH),
        "scope": " ".join(TWITTER_SCOPES),
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    })
    twitter_logger.info(f"Twitter OAuth started - User: {user_id}")
    return f"{TWITTER_AUTH_URL}?{query}"


def complete_twitter_auth(
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
    store: CredentialStore,
    http: httpx.Client,
    twitter_config: TwitterConfig
) -> str:
    """Finish the PKCE flow and return the dashboard URL to redirect to"""
    reason = _complete_twitter_auth(code, state, error, store, http, twitter_config)
    status = "success" if reason is None else reason
    oauth_callbacks_counter.labels(platform="twitter", status=status).inc()
    if reason:
        twitter_logger.warning(f"Twitter callback failed - Reason: {reason}")
        return dashboard_error(reason)
    return dashboard_success("twitter_connected")


def _complete_twitter_auth(
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
    store: CredentialStore,
    http: httpx.Client,
    twitter_config: TwitterConfig
) -> Optional[str]:
    if error:
        return "twitter_auth_denied"
    if not code or not state:
        return "missing_params"

    try:
        session = store.get_twitter_pkce_session(state)
    except StoreError:
        return "session_error"
    if session is None:
        return "session_not_found"

    try:
        tokens = platform_service.exchange_twitter_code(
            http, code, session.code_verifier, callback_url(TWITTER_CALLBACK_PATH),
            twitter_config.client_id, twitter_config.client_secret
        )
    except UpstreamError as e:
        return "exchange_failed" if e.upstream_status is None else "token_failed"
    except ValueError:
        return "parse_failed"

    try:
        profile = platform_service.fetch_twitter_profile(http, tokens.access_token)
    except (UpstreamError, ValueError) as e:
        twitter_logger.warning(f"Twitter profile fetch failed, saving tokens without profile: {e}")
        profile = platform_service.TwitterProfile()

    try:
        store.update_twitter_token(
            session.user_id, tokens.access_token, tokens.refresh_token, tokens.expires_at,
            profile.id, profile.username, profile.profile_image_url
        )
    except StoreError:
        return "save_failed"

    best_effort(lambda: store.delete_twitter_pkce_session(state), "delete consumed twitter pkce session")
    twitter_logger.info(f"Twitter connected - User: {session.user_id}")
    return None


def refresh_twitter_access_token(
    refresh_token: str,
    http: httpx.Client,
    twitter_config: TwitterConfig
) -> platform_service.TwitterTokens:
    return platform_service.refresh_twitter_token(
        http, refresh_token, twitter_config.client_id, twitter_config.client_secret
    )
