"""OAuth flow tests - Spotify login, MiAuth and Twitter PKCE"""
import uuid
from datetime import timedelta
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from nowplaying.core.config import (
    SPOTIFY_ME_URL, TWITTER_AUTH_URL, TWITTER_TOKEN_URL, TWITTER_USERS_ME_URL, settings
)
from nowplaying.core.errors import (
    OAuthFlowError, StoreError, TwitterNotAvailableError, TwitterNotEligibleError, UpstreamError
)
from nowplaying.core.security import validate_session_token
from nowplaying.db.store import CredentialStore
from nowplaying.services.oauth_service import (
    build_spotify_login_url, complete_misskey_auth, complete_share_login, complete_spotify_login,
    complete_twitter_auth, initiate_misskey_auth, initiate_twitter_auth, normalize_instance_url,
    refresh_twitter_access_token
)
from nowplaying.services.twitter_config import TwitterConfig
from nowplaying.utils.tokens import generate_pkce_challenge

MISSKEY = "https://misskey.example"
TOKEN_RESPONSE = {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600}


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _twitter_config(**overrides) -> TwitterConfig:
    values = dict(enabled=True, client_id="twitter-client-id", client_secret="twitter-client-secret")
    values.update(overrides)
    return TwitterConfig(**values)


# ============================================================================
# SPOTIFY
# ============================================================================

@pytest.mark.critical
class TestSpotifyLogin:

    def test_login_url(self, spotify):
        query = _query(build_spotify_login_url(spotify))
        assert query["client_id"] == "spotify-client-id"
        assert query["response_type"] == "code"
        assert query["redirect_uri"] == "http://testserver/api/auth/spotify/callback"
        assert query["scope"] == "user-read-currently-playing user-read-playback-state"

    def test_provider_error_is_denied(self, store, spotify, session_config):
        with pytest.raises(OAuthFlowError) as exc_info:
            complete_spotify_login(None, "access_denied", store, spotify, session_config)
        assert exc_info.value.reason == "spotify_auth_denied"

    def test_missing_code(self, store, spotify, session_config):
        with pytest.raises(OAuthFlowError) as exc_info:
            complete_spotify_login("", None, store, spotify, session_config)
        assert exc_info.value.reason == "missing_code"

    def test_success_creates_user_and_session(self, store, spotify, upstream, session_config):
        upstream.add("POST", settings.SPOTIFY_TOKEN_URL, json=TOKEN_RESPONSE)
        upstream.add("GET", SPOTIFY_ME_URL, json={"id": "spotify-new", "display_name": "New"})

        result = complete_spotify_login("auth-code", None, store, spotify, session_config)

        assert result.user.spotify_user_id == "spotify-new"
        assert store.get_user_by_spotify_id("spotify-new").spotify_access_token == "new-access"
        claims = validate_session_token(session_config, result.session_token)
        assert claims.user_id == result.user.id

        token_request = upstream.calls("POST", settings.SPOTIFY_TOKEN_URL)[0]
        assert token_request.headers["Authorization"].startswith("Basic ")
        body = parse_qs(token_request.content.decode())
        assert body["grant_type"] == ["authorization_code"]
        assert body["code"] == ["auth-code"]

    def test_rejected_code_is_not_retryable(self, store, spotify, upstream, session_config):
        upstream.add("POST", settings.SPOTIFY_TOKEN_URL, status_code=400, json={"error": "invalid_grant"})
        with pytest.raises(OAuthFlowError) as exc_info:
            complete_spotify_login("bad-code", None, store, spotify, session_config)
        assert exc_info.value.reason == "token_exchange_failed"
        assert not exc_info.value.retryable

    def test_provider_outage_is_retryable(self, store, spotify, upstream, session_config):
        upstream.add("POST", settings.SPOTIFY_TOKEN_URL, status_code=503, content=b"unavailable")
        with pytest.raises(OAuthFlowError) as exc_info:
            complete_spotify_login("code", None, store, spotify, session_config)
        assert exc_info.value.reason == "provider_unavailable"
        assert exc_info.value.retryable

    def test_transport_failure_is_retryable(self, store, spotify, upstream, session_config):
        upstream.add("POST", settings.SPOTIFY_TOKEN_URL, exc=httpx.ConnectError("connection refused"))
        with pytest.raises(OAuthFlowError) as exc_info:
            complete_spotify_login("code", None, store, spotify, session_config)
        assert exc_info.value.reason == "provider_unavailable"

    def test_profile_failure(self, store, spotify, upstream, session_config):
        upstream.add("POST", settings.SPOTIFY_TOKEN_URL, json=TOKEN_RESPONSE)
        upstream.add("GET", SPOTIFY_ME_URL, status_code=500, content=b"boom")
        with pytest.raises(OAuthFlowError) as exc_info:
            complete_spotify_login("code", None, store, spotify, session_config)
        assert exc_info.value.reason == "profile_fetch_failed"

    def test_store_failure(self, spotify, upstream, session_config):
        upstream.add("POST", settings.SPOTIFY_TOKEN_URL, json=TOKEN_RESPONSE)
        upstream.add("GET", SPOTIFY_ME_URL, json={"id": "spotify-new"})
        broken_store = Mock()
        broken_store.create_or_update_user.side_effect = StoreError("db down")
        with pytest.raises(OAuthFlowError) as exc_info:
            complete_spotify_login("code", None, broken_store, spotify, session_config)
        assert exc_info.value.reason == "user_creation_failed"
        assert exc_info.value.status_code == 500

    def test_share_login_returns_encrypted_cookie_value(self, spotify, upstream, cipher):
        upstream.add("POST", settings.SPOTIFY_TOKEN_URL, json=TOKEN_RESPONSE)
        value = complete_share_login("code", "misskey", spotify, cipher)
        assert value != "new-access"
        assert cipher.decrypt(value) == "new-access"
        body = parse_qs(upstream.requests[0].content.decode())
        assert body["redirect_uri"] == ["http://testserver/note/callback"]


# ============================================================================
# MISSKEY
# ============================================================================

@pytest.mark.high
class TestMiAuth:

    def test_normalize_instance_url(self):
        assert normalize_instance_url("misskey.io") == "https://misskey.io"
        assert normalize_instance_url(" https://misskey.io/ ") == "https://misskey.io"
        with pytest.raises(OAuthFlowError) as exc_info:
            normalize_instance_url("  ")
        assert exc_info.value.reason == "instance_url_required"

    def test_initiate_persists_session_and_builds_url(self, test_user, store):
        auth_url = initiate_misskey_auth(test_user.id, "misskey.example", store)

        parsed = urlparse(auth_url)
        assert f"{parsed.scheme}://{parsed.netloc}" == MISSKEY
        session_id = uuid.UUID(parsed.path.rsplit("/", 1)[-1])
        assert parsed.path == f"/miauth/{session_id}"
        assert "permission=write%3Anotes,read%3Aaccount" in parsed.query
        query = _query(auth_url)
        assert query["callback"] == "http://testserver/api/miauth/callback"
        assert query["name"] == settings.APP_NAME

        session = store.get_miauth_session(session_id)
        assert session.user_id == test_user.id
        assert session.instance_url == MISSKEY

    def test_initiate_store_failure(self, test_user):
        broken_store = Mock()
        broken_store.create_miauth_session.side_effect = StoreError("db down")
        with pytest.raises(OAuthFlowError) as exc_info:
            initiate_misskey_auth(test_user.id, MISSKEY, broken_store)
        assert exc_info.value.reason == "session_create_failed"
        assert exc_info.value.status_code == 500

    def _start(self, user, store) -> str:
        return urlparse(initiate_misskey_auth(user.id, MISSKEY, store)).path.rsplit("/", 1)[-1]

    def test_callback_success_saves_token_and_consumes_session(self, test_user, store, http_client, upstream):
        session_id = self._start(test_user, store)
        upstream.add("POST", f"{MISSKEY}/api/miauth/{session_id}/check",
                     json={"ok": True, "token": "mk-token", "user": {"id": "mk-id", "username": "alice"}})
        upstream.add("POST", f"{MISSKEY}/api/i",
                     json={"id": "mk-id", "username": "alice", "avatarUrl": "https://misskey.example/a.png"})

        redirect = complete_misskey_auth(session_id, store, http_client)

        assert redirect == "/dashboard?success=misskey_connected"
        user = store.get_user_by_id(test_user.id)
        assert user.misskey_access_token == "mk-token"
        assert user.misskey_username == "alice"
        assert user.misskey_avatar_url == "https://misskey.example/a.png"
        assert user.misskey_host == "misskey.example"
        assert store.get_miauth_session(uuid.UUID(session_id)) is None

    def test_profile_failure_falls_back_to_check_identity(self, test_user, store, http_client, upstream):
        session_id = self._start(test_user, store)
        upstream.add("POST", f"{MISSKEY}/api/miauth/{session_id}/check",
                     json={"ok": True, "token": "mk-token", "user": {"id": "mk-id", "username": "alice"}})
        upstream.add("POST", f"{MISSKEY}/api/i", status_code=500, content=b"error")

        assert complete_misskey_auth(session_id, store, http_client) == "/dashboard?success=misskey_connected"
        user = store.get_user_by_id(test_user.id)
        assert user.misskey_user_id == "mk-id"
        assert user.misskey_avatar_url is None

    @pytest.mark.parametrize("session_param, reason", [
        (None, "missing_session"),
        ("not-a-uuid", "invalid_session"),
        (str(uuid.uuid4()), "session_not_found"),
    ])
    def test_callback_rejects_bad_session(self, store, http_client, session_param, reason):
        assert complete_misskey_auth(session_param, store, http_client) == f"/dashboard?error={reason}"

    def test_expired_and_swept_session_is_not_found(self, test_user, db_session, cipher, http_client):
        expired_store = CredentialStore(db_session, cipher, session_ttl=timedelta(minutes=-1))
        session_id = self._start(test_user, expired_store)
        expired_store.cleanup_expired_sessions()
        assert complete_misskey_auth(session_id, expired_store, http_client) == "/dashboard?error=session_not_found"

    def test_check_not_ok(self, test_user, store, http_client, upstream):
        session_id = self._start(test_user, store)
        upstream.add("POST", f"{MISSKEY}/api/miauth/{session_id}/check", json={"ok": False})
        assert complete_misskey_auth(session_id, store, http_client) == "/dashboard?error=auth_failed"
        assert store.get_user_by_id(test_user.id).misskey_access_token is None

    def test_check_transport_failure(self, test_user, store, http_client, upstream):
        session_id = self._start(test_user, store)
        upstream.add("POST", f"{MISSKEY}/api/miauth/{session_id}/check", exc=httpx.ConnectTimeout("timed out"))
        assert complete_misskey_auth(session_id, store, http_client) == "/dashboard?error=check_failed"

    def test_check_unparseable(self, test_user, store, http_client, upstream):
        session_id = self._start(test_user, store)
        upstream.add("POST", f"{MISSKEY}/api/miauth/{session_id}/check", content=b"<html>")
        assert complete_misskey_auth(session_id, store, http_client) == "/dashboard?error=parse_failed"

    def test_check_user_not_an_object(self, test_user, store, http_client, upstream):
        session_id = self._start(test_user, store)
        upstream.add("POST", f"{MISSKEY}/api/miauth/{session_id}/check", json={"ok": True, "token": "t", "user": "x"})
        assert complete_misskey_auth(session_id, store, http_client) == "/dashboard?error=parse_failed"
        assert store.get_user_by_id(test_user.id).misskey_access_token is None

    def test_session_delete_failure_still_succeeds(self, test_user, store, http_client, upstream):
        session_id = self._start(test_user, store)
        upstream.add("POST", f"{MISSKEY}/api/miauth/{session_id}/check",
                     json={"ok": True, "token": "mk-token", "user": {"id": "mk-id", "username": "alice"}})
        upstream.add("POST", f"{MISSKEY}/api/i", json={"id": "mk-id", "username": "alice"})

        with patch.object(store, "delete_miauth_session", side_effect=StoreError("db down")) as delete:
            redirect = complete_misskey_auth(session_id, store, http_client)

        assert redirect == "/dashboard?success=misskey_connected"
        delete.assert_called_once_with(uuid.UUID(session_id))
        assert store.get_user_by_id(test_user.id).misskey_access_token == "mk-token"


# ============================================================================
# TWITTER
# ============================================================================

@pytest.mark.high
class TestTwitterAuth:

    def test_not_available(self, test_user, store):
        with pytest.raises(TwitterNotAvailableError):
            initiate_twitter_auth(test_user.id, store, _twitter_config(client_secret=""))

    def test_not_eligible_without_misskey(self, test_user, store):
        with pytest.raises(TwitterNotEligibleError) as exc_info:
            initiate_twitter_auth(test_user.id, store, _twitter_config(require_misskey=True))
        assert exc_info.value.message == "misskey connection required"

    def test_eligibility_uses_misskey_instance_url(self, test_user, store):
        store.update_misskey_token(test_user.id, "https://misskey.io", "t", "id", "u", None, "misskey.io")
        config = _twitter_config(require_misskey=True, allowed_misskey_hosts=["misskey.io"])
        assert initiate_twitter_auth(test_user.id, store, config).startswith(TWITTER_AUTH_URL)

    def test_initiate_stores_verifier_matching_challenge(self, test_user, store):
        query = _query(initiate_twitter_auth(test_user.id, store, _twitter_config()))

        assert query["response_type"] == "code"
        assert query["client_id"] == "twitter-client-id"
        assert query["redirect_uri"] == "http://testserver/api/twitter/callback"
        assert query["scope"] == "tweet.read tweet.write users.read offline.access"
        assert query["code_challenge_method"] == "S256"
        session = store.get_twitter_pkce_session(query["state"])
        assert session.user_id == test_user.id
        assert generate_pkce_challenge(session.code_verifier) == query["code_challenge"]

    def _start(self, user, store) -> str:
        return _query(initiate_twitter_auth(user.id, store, _twitter_config()))["state"]

    def test_callback_success(self, test_user, store, http_client, upstream):
        state = self._start(test_user, store)
        verifier = store.get_twitter_pkce_session(state).code_verifier
        upstream.add("POST", TWITTER_TOKEN_URL, json={"access_token": "tw-access", "refresh_token": "tw-refresh", "expires_in": 7200})
        upstream.add("GET", TWITTER_USERS_ME_URL,
                     json={"data": {"id": "tw-id", "username": "bob", "profile_image_url": "https://pbs.example/b.jpg"}})

        redirect = complete_twitter_auth("tw-code", state, None, store, http_client, _twitter_config())

        assert redirect == "/dashboard?success=twitter_connected"
        body = parse_qs(upstream.calls("POST", TWITTER_TOKEN_URL)[0].content.decode())
        assert body["code_verifier"] == [verifier]
        assert body["grant_type"] == ["authorization_code"]
        user = store.get_user_by_id(test_user.id)
        assert user.twitter_access_token == "tw-access"
        assert user.twitter_refresh_token == "tw-refresh"
        assert user.twitter_username == "bob"
        assert user.twitter_token_expires_at is not None
        assert store.get_twitter_pkce_session(state) is None

    def test_profile_failure_still_saves_tokens(self, test_user, store, http_client, upstream):
        state = self._start(test_user, store)
        upstream.add("POST", TWITTER_TOKEN_URL, json={"access_token": "tw-access", "expires_in": 7200})
        upstream.add("GET", TWITTER_USERS_ME_URL, status_code=429, content=b"rate limited")

        assert complete_twitter_auth("code", state, None, store, http_client, _twitter_config()) == "/dashboard?success=twitter_connected"
        user = store.get_user_by_id(test_user.id)
        assert user.twitter_connected
        assert user.twitter_username is None

    def test_session_delete_failure_still_succeeds(self, test_user, store, http_client, upstream):
        state = self._start(test_user, store)
        upstream.add("POST", TWITTER_TOKEN_URL, json={"access_token": "tw-access", "expires_in": 7200})
        upstream.add("GET", TWITTER_USERS_ME_URL, json={"data": {"id": "tw-id", "username": "bob"}})

        with patch.object(store, "delete_twitter_pkce_session", side_effect=StoreError("db down")) as delete:
            redirect = complete_twitter_auth("code", state, None, store, http_client, _twitter_config())

        assert redirect == "/dashboard?success=twitter_connected"
        delete.assert_called_once_with(state)
        assert store.get_user_by_id(test_user.id).twitter_access_token == "tw-access"

    @pytest.mark.parametrize("code, state, error, reason", [
        (None, None, "access_denied", "twitter_auth_denied"),
        ("code", None, None, "missing_params"),
        (None, "state", None, "missing_params"),
        ("code", "unknown-state", None, "session_not_found"),
    ])
    def test_callback_rejections(self, store, http_client, code, state, error, reason):
        redirect = complete_twitter_auth(code, state, error, store, http_client, _twitter_config())
        assert redirect == f"/dashboard?error={reason}"

    def test_token_endpoint_rejects(self, test_user, store, http_client, upstream):
        state = self._start(test_user, store)
        upstream.add("POST", TWITTER_TOKEN_URL, status_code=400, json={"error": "invalid_request"})
        assert complete_twitter_auth("code", state, None, store, http_client, _twitter_config()) == "/dashboard?error=token_failed"

    def test_token_endpoint_unreachable(self, test_user, store, http_client, upstream):
        state = self._start(test_user, store)
        upstream.add("POST", TWITTER_TOKEN_URL, exc=httpx.ConnectError("connection refused"))
        assert complete_twitter_auth("code", state, None, store, http_client, _twitter_config()) == "/dashboard?error=exchange_failed"

    def test_token_response_without_access_token(self, test_user, store, http_client, upstream):
        state = self._start(test_user, store)
        upstream.add("POST", TWITTER_TOKEN_URL, json={"token_type": "bearer"})
        assert complete_twitter_auth("code", state, None, store, http_client, _twitter_config()) == "/dashboard?error=parse_failed"

    def test_refresh_access_token(self, http_client, upstream):
        upstream.add("POST", TWITTER_TOKEN_URL, json={"access_token": "fresh", "refresh_token": "rotated", "expires_in": 7200})
        tokens = refresh_twitter_access_token("old-refresh", http_client, _twitter_config())
        assert tokens.access_token == "fresh"
        assert tokens.refresh_token == "rotated"
        request = upstream.requests[0]
        assert request.headers["Authorization"].startswith("Basic ")
        assert parse_qs(request.content.decode()) == {"refresh_token": ["old-refresh"], "grant_type": ["refresh_token"]}

    def test_refresh_rejected(self, http_client, upstream):
        upstream.add("POST", TWITTER_TOKEN_URL, status_code=401, json={"error": "invalid_grant"})
        with pytest.raises(UpstreamError) as exc_info:
            refresh_twitter_access_token("old-refresh", http_client, _twitter_config())
        assert exc_info.value.upstream_status == 401
