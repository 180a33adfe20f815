"""Settings service - account overview, API tokens and UI configuration"""
import logging
import uuid

from nowplaying.core.errors import SpotifyAPIError, UpstreamError, UserNotFoundError
from nowplaying.db.store import CredentialStore
from nowplaying.schemas.api import ConfigResponse, HeaderTokenResponse, UserInfoResponse
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.services.twitter_config import TwitterConfig
from nowplaying.utils.tokens import generate_random_token, hash_token

logger = logging.getLogger(__name__)

HEADER_TOKEN_BYTES = 32
HEADER_TOKEN_MESSAGE = "Token generated successfully. Save this token - it will not be shown again."


def get_user_info(user_id: uuid.UUID, store: CredentialStore, spotify: SpotifyClient) -> UserInfoResponse:
    """Account overview; the Spotify display name and image are best-effort"""
    user = store.get_user_by_id(user_id)
    if user is None:
        raise UserNotFoundError(details={"user_id": str(user_id)})

    info = UserInfoResponse(
        id=str(user.id),
        spotify_user_id=user.spotify_user_id,
        misskey_connected=user.misskey_connected,
        misskey_instance_url=user.misskey_instance_url,
        misskey_user_id=user.misskey_user_id,
        misskey_username=user.misskey_username,
        misskey_avatar_url=user.misskey_avatar_url,
        misskey_host=user.misskey_host,
        twitter_connected=user.twitter_connected,
        twitter_user_id=user.twitter_user_id,
        twitter_username=user.twitter_username,
        twitter_avatar_url=user.twitter_avatar_url,
        api_url_token=user.api_url_token,
        api_header_token_enabled=user.api_header_token_enabled,
    )

    if user.spotify_access_token:
        try:
            profile = spotify.get_current_user(user.spotify_access_token)
            info.spotify_display_name = profile.get("display_name")
            images = profile.get("images") or []
            if images:
                info.spotify_image_url = images[0].get("url")
        except (SpotifyAPIError, UpstreamError, ValueError) as e:
            logger.info(f"Spotify profile unavailable for user {user_id}: {e}")
    return info


def generate_header_token(user_id: uuid.UUID, store: CredentialStore) -> HeaderTokenResponse:
    """Create a new header token; only its hash is stored"""
    token = generate_random_token(HEADER_TOKEN_BYTES)
    store.set_api_header_token(user_id, hash_token(token))
    logger.info(f"Header token enabled for user {user_id}")
    return HeaderTokenResponse(token=token, message=HEADER_TOKEN_MESSAGE)


def get_app_config(user_id: uuid.UUID, store: CredentialStore, twitter_config: TwitterConfig) -> ConfigResponse:
    """Twitter availability plus this user's eligibility, for the dashboard"""
    user = store.get_user_by_id(user_id)
    if user is None:
        raise UserNotFoundError(details={"user_id": str(user_id)})
    eligibility = twitter_config.check_eligibility(user.misskey_connected, user.misskey_instance_url)
    return ConfigResponse(
        twitter_available=twitter_config.is_available(),
        twitter_eligibility=eligibility,
    )
