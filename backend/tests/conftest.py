"""Shared pytest fixtures for test suite"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time
TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TOKEN_ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["BASE_URL"] = "http://testserver"
os.environ["SPOTIFY_CLIENT_ID"] = "spotify-client-id"
os.environ["SPOTIFY_CLIENT_SECRET"] = "spotify-client-secret"
os.environ["TWITTER_CLIENT_ID"] = "twitter-client-id"
os.environ["TWITTER_CLIENT_SECRET"] = "twitter-client-secret"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from nowplaying.api.deps import get_http_client
from nowplaying.core.security import get_session_config, issue_session_token
from nowplaying.db.session import get_db
from nowplaying.db.store import CredentialStore
from nowplaying.main import app
from nowplaying.models import Base
from nowplaying.schemas.user import UserRecord
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.utils.encryption import TokenCipher


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class MockUpstream:
    """Canned responses for outbound HTTP calls, keyed by method and URL without query

    A route registered several times answers in order; the last answer repeats.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method: str, url: str, status_code: int = 200, json=None, content: bytes = b"", exc: Exception = None):
        key = (method.upper(), url.split("?")[0])
        self.routes.setdefault(key, []).append((status_code, json, content, exc))

    def calls(self, method: str, url: str):
        key = (method.upper(), url.split("?")[0])
        return [r for r in self.requests if (r.method, str(r.url).split("?")[0]) == key]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, str(request.url).split("?")[0]))
        if not queue:
            return httpx.Response(599, text=f"no mock route for {request.method} {request.url}")
        status_code, body, content, exc = queue.pop(0) if len(queue) > 1 else queue[0]
        if exc is not None:
            raise exc
        if body is not None:
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, content=content)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture(scope="function")
def http_client(upstream: MockUpstream) -> Generator[httpx.Client, None, None]:
    with httpx.Client(transport=httpx.MockTransport(upstream)) as c:
        yield c


@pytest.fixture(scope="function")
def cipher() -> TokenCipher:
    return TokenCipher.from_key(TEST_ENCRYPTION_KEY)


@pytest.fixture(scope="function")
def store(db_session: Session, cipher: TokenCipher) -> CredentialStore:
    return CredentialStore(db_session, cipher)


@pytest.fixture(scope="function")
def spotify(http_client: httpx.Client) -> SpotifyClient:
    return SpotifyClient(http_client)


@pytest.fixture(scope="function")
def session_config():
    return get_session_config()


@pytest.fixture(scope="function")
def test_user(store: CredentialStore) -> UserRecord:
    """A user who has completed Spotify login"""
    return store.create_or_update_user(
        "spotify-user-1",
        "spotify-access-token",
        "spotify-refresh-token",
        datetime.now(timezone.utc) + timedelta(hours=1),
    )


@pytest.fixture(scope="function")
def client(db_session: Session, http_client: httpx.Client) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked upstream HTTP"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = lambda: http_client

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: UserRecord, session_config) -> TestClient:
    """Test client carrying a valid session cookie for test_user"""
    token = issue_session_token(session_config, test_user.id, test_user.spotify_user_id)
    client.cookies.set(session_config.cookie_name, token)
    return client
