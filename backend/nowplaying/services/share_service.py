"""Turn Spotify player state into share links and post text"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote_plus

from nowplaying.core.config import settings
from nowplaying.core.metrics import share_redirects_counter
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.utils.encryption import TokenCipher, decrypt_token

CONTENT_TRACK = "track"
CONTENT_EPISODE = "episode"
CONTENT_UNKNOWN = "unknown"

PLATFORM_MISSKEY = "misskey"
PLATFORM_TWITTER = "twitter"


@dataclass
class TrackData:
    name: str = ""
    url: str = ""
    artist: str = ""


def parse_player_response(data: Optional[Dict[str, Any]]) -> Tuple[TrackData, str]:
    """Extract what is playing; content type is track, episode or unknown"""
    if not data:
        return TrackData(), CONTENT_UNKNOWN

    item = data.get("item") or {}
    playing_type = data.get("currently_playing_type")
    url = (item.get("external_urls") or {}).get("spotify", "")

    if playing_type == CONTENT_TRACK:
        artists = ", ".join(a.get("name", "") for a in item.get("artists") or [])
        return TrackData(name=item.get("name", ""), url=url, artist=artists), CONTENT_TRACK
    if playing_type == CONTENT_EPISODE:
        show = (item.get("show") or {}).get("name", "")
        return TrackData(name=item.get("name", ""), url=url, artist=show), CONTENT_EPISODE
    return TrackData(), CONTENT_UNKNOWN


def share_text(track: TrackData, content_type: str) -> str:
    """Share-intent text; the track URL is passed separately"""
    if content_type == CONTENT_TRACK:
        return f"{track.name} / {track.artist}\n#NowPlaying #PsrPlaying"
    return f"{track.name} / {track.artist}\n#NowPlaying"


def build_post_text(track: TrackData, content_type: str) -> str:
    """Text posted directly to Misskey/Twitter, URL included"""
    return f"{share_text(track, content_type)}\n{track.url}"


def build_share_url(track: TrackData, content_type: str, platform: str) -> str:
    text = quote_plus(share_text(track, content_type))
    if platform == PLATFORM_MISSKEY:
        server_uri = settings.SERVER_URI
        if not server_uri.startswith(("http://", "https://")):
            server_uri = f"https://{server_uri}"
        return f"{server_uri.rstrip('/')}/share?url={track.url}&text={text}"
    if platform == PLATFORM_TWITTER:
        return f"https://x.com/intent/tweet?url={track.url}&text={text}"
    raise ValueError(f"unknown share platform: {platform}")


def resolve_share_url(
    access_cookie: str,
    platform: str,
    spotify: SpotifyClient,
    cipher: Optional[TokenCipher]
) -> Optional[str]:
    """Share URL for what the cookie's owner is playing, or None when nothing is

    Raises:
        SpotifyAPIError / UpstreamError: the player request failed
    """
    access_token = decrypt_token(access_cookie, cipher)
    data, _ = spotify.get_player_data(access_token)
    track, content_type = parse_player_response(data)
    share_redirects_counter.labels(platform=platform, content_type=content_type).inc()
    if content_type == CONTENT_UNKNOWN:
        return None
    return build_share_url(track, content_type, platform)
