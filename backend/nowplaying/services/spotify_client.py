"""Spotify Web API client - token exchange, refresh, profile and player state"""
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import httpx

from nowplaying.core.config import SPOTIFY_ME_URL, SPOTIFY_PLAYER_URL, SPOTIFY_SCOPES, settings
from nowplaying.core.errors import SpotifyAPIError, UpstreamError
from nowplaying.core.logging import spotify_logger
from nowplaying.core.metrics import spotify_api_duration_histogram, spotify_api_requests_counter


@dataclass
class SpotifyTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int

    @property
    def expires_at(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.expires_in)


class SpotifyClient:
    """Thin wrapper over the Spotify endpoints this service needs

    The httpx.Client is injected so callers control connection reuse and tests
    can mount a MockTransport.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        token_timeout: Optional[float] = None
    ):
        self.http = http_client
        self.client_id = client_id if client_id is not None else settings.SPOTIFY_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.SPOTIFY_CLIENT_SECRET
        self.timeout = timeout if timeout is not None else settings.PROFILE_FETCH_TIMEOUT
        self.token_timeout = token_timeout if token_timeout is not None else settings.TOKEN_EXCHANGE_TIMEOUT

    def build_authorize_url(self, redirect_uri: str) -> str:
        params = httpx.QueryParams({
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": " ".join(SPOTIFY_SCOPES),
        })
        return f"{settings.SPOTIFY_AUTH_URL}?{params}"

    def _request(self, endpoint: str, method: str, url: str, timeout: Optional[float] = None,
                 **kwargs) -> httpx.Response:
        start = time.monotonic()
        try:
            response = self.http.request(method, url, timeout=timeout if timeout is not None else self.timeout, **kwargs)
        except httpx.HTTPError as e:
            spotify_api_requests_counter.labels(endpoint=endpoint, status="error").inc()
            spotify_logger.warning(f"Spotify {endpoint} request failed: {type(e).__name__}: {e}")
            raise UpstreamError(f"spotify {endpoint} request failed: {e}")
        finally:
            spotify_api_duration_histogram.labels(endpoint=endpoint).observe(time.monotonic() - start)

        spotify_api_requests_counter.labels(endpoint=endpoint, status=str(response.status_code)).inc()
        if response.status_code >= 400:
            raise SpotifyAPIError(response.status_code, response.text)
        return response

    def _token_request(self, endpoint: str, data: Dict[str, str]) -> SpotifyTokens:
        response = self._request(
            endpoint, "POST", settings.SPOTIFY_TOKEN_URL,
            data=data,
            auth=(self.client_id, self.client_secret),
            timeout=self.token_timeout,
        )
        try:
            payload = response.json()
            return SpotifyTokens(
                access_token=payload["access_token"],
                refresh_token=payload.get("refresh_token"),
                expires_in=int(payload.get("expires_in", 3600)),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError(f"unexpected spotify token response: {e}")

    def exchange_code(self, code: str, redirect_uri: str) -> SpotifyTokens:
        """Exchange an authorization code (HTTP Basic client auth)"""
        return self._token_request("token", {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

    def refresh_token(self, refresh_token: str) -> SpotifyTokens:
        """Refresh an access token - Spotify may omit a new refresh token"""
        return self._token_request("refresh", {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    def get_current_user(self, access_token: str) -> Dict[str, Any]:
        response = self._request(
            "me", "GET", SPOTIFY_ME_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return response.json()

    def get_player_data(self, access_token: str) -> Tuple[Optional[Dict[str, Any]], float]:
        """Current playback state and request duration; None when nothing is playing"""
        start = time.monotonic()
        response = self._request(
            "player", "GET", SPOTIFY_PLAYER_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept-Language": "ja",
            },
        )
        duration = time.monotonic() - start
        if response.status_code == 204 or not response.content:
            return None, duration
        return response.json(), duration
