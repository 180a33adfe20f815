"""Share link and post text tests"""
from urllib.parse import parse_qs, urlparse

import pytest

from nowplaying.core.config import SPOTIFY_PLAYER_URL
from nowplaying.core.errors import SpotifyAPIError
from nowplaying.services.share_service import (
    CONTENT_EPISODE, CONTENT_TRACK, CONTENT_UNKNOWN, TrackData, build_post_text, build_share_url,
    parse_player_response, resolve_share_url
)

TRACK = {
    "currently_playing_type": "track",
    "item": {
        "name": "夜に駆ける",
        "artists": [{"name": "YOASOBI"}],
        "external_urls": {"spotify": "https://open.spotify.com/track/xyz"},
    },
}
EPISODE = {
    "currently_playing_type": "episode",
    "item": {
        "name": "Episode 1",
        "show": {"name": "Some Podcast"},
        "external_urls": {"spotify": "https://open.spotify.com/episode/ep1"},
    },
}


@pytest.mark.medium
class TestPlayerParsing:

    def test_track(self):
        track, content_type = parse_player_response(TRACK)
        assert content_type == CONTENT_TRACK
        assert track == TrackData(name="夜に駆ける", url="https://open.spotify.com/track/xyz", artist="YOASOBI")

    def test_episode_uses_show_name(self):
        track, content_type = parse_player_response(EPISODE)
        assert content_type == CONTENT_EPISODE
        assert track.artist == "Some Podcast"

    def test_nothing_or_ad(self):
        assert parse_player_response(None)[1] == CONTENT_UNKNOWN
        assert parse_player_response({"currently_playing_type": "ad", "item": None})[1] == CONTENT_UNKNOWN

    def test_post_text(self):
        track, content_type = parse_player_response(EPISODE)
        assert build_post_text(track, content_type) == (
            "Episode 1 / Some Podcast\n#NowPlaying\nhttps://open.spotify.com/episode/ep1"
        )


@pytest.mark.medium
class TestShareURL:

    def test_misskey_share_url(self):
        track, content_type = parse_player_response(TRACK)
        url = build_share_url(track, content_type, "misskey")
        parsed = urlparse(url)
        assert parsed.netloc == "misskey.io"
        assert parsed.path == "/share"
        query = parse_qs(parsed.query)
        assert query["text"] == ["夜に駆ける / YOASOBI\n#NowPlaying #PsrPlaying"]
        assert query["url"] == ["https://open.spotify.com/track/xyz"]

    def test_twitter_share_url(self):
        track, content_type = parse_player_response(EPISODE)
        url = build_share_url(track, content_type, "twitter")
        assert url.startswith("https://x.com/intent/tweet?")
        assert parse_qs(urlparse(url).query)["text"] == ["Episode 1 / Some Podcast\n#NowPlaying"]

    def test_unknown_platform(self):
        with pytest.raises(ValueError):
            build_share_url(TrackData(), CONTENT_TRACK, "mastodon")

    def test_resolve_decrypts_cookie(self, spotify, upstream, cipher):
        upstream.add("GET", SPOTIFY_PLAYER_URL, json=TRACK)
        url = resolve_share_url(cipher.encrypt("player-token"), "twitter", spotify, cipher)
        assert url.startswith("https://x.com/intent/tweet?")
        assert upstream.requests[0].headers["Authorization"] == "Bearer player-token"
        assert upstream.requests[0].headers["Accept-Language"] == "ja"

    def test_resolve_nothing_playing(self, spotify, upstream, cipher):
        upstream.add("GET", SPOTIFY_PLAYER_URL, status_code=204)
        assert resolve_share_url(cipher.encrypt("t"), "misskey", spotify, cipher) is None

    def test_resolve_spotify_error(self, spotify, upstream, cipher):
        upstream.add("GET", SPOTIFY_PLAYER_URL, status_code=401, content=b"")
        with pytest.raises(SpotifyAPIError) as exc_info:
            resolve_share_url(cipher.encrypt("t"), "misskey", spotify, cipher)
        assert exc_info.value.status_code == 401
