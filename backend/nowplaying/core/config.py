"""Application configuration using Pydantic BaseSettings"""
import logging
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("config")

DEFAULT_JWT_SECRET = "default-secret-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str = ""
    POSTGRES_USER: str = "nowplaying"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "nowplaying"

    # Domain & URLs
    BASE_URL: str = "http://localhost:8080"
    SERVER_URI: str = "https://misskey.io"
    APP_NAME: str = "Spotify NowPlaying"
    ENVIRONMENT: str = "development"
    CORS_ORIGINS: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"

    # OpenTelemetry
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""
    OTEL_SERVICE_NAME: str = "nowplaying-backend"
    OTEL_ENVIRONMENT: str = "development"

    # Spotify OAuth
    SPOTIFY_CLIENT_ID: str = ""
    SPOTIFY_CLIENT_SECRET: str = ""
    SPOTIFY_AUTH_URL: str = "https://accounts.spotify.com/authorize"
    SPOTIFY_TOKEN_URL: str = "https://accounts.spotify.com/api/token"
    SPOTIFY_API_BASE: str = "https://api.spotify.com/v1"

    # Twitter / X OAuth 2.0
    TWITTER_CLIENT_ID: str = ""
    TWITTER_CLIENT_SECRET: str = ""
    TWITTER_ENABLED: bool = True
    TWITTER_REQUIRE_MISSKEY: bool = False
    TWITTER_ALLOWED_HOSTS: str = ""

    # Security
    # JWT_SECRET signs session cookies; TOKEN_ENCRYPTION_KEY must be exactly 32 bytes (AES-256).
    JWT_SECRET: str = ""
    JWT_TOKEN_DURATION_HOURS: int = 24 * 7
    SESSION_COOKIE_NAME: str = "session_token"
    TOKEN_ENCRYPTION_KEY: str = ""

    # Handshake sessions
    HANDSHAKE_SESSION_TTL_MINUTES: int = 10
    SESSION_CLEANUP_INTERVAL_SECONDS: int = 3600

    # Outbound HTTP timeouts (seconds)
    PROFILE_FETCH_TIMEOUT: float = 10.0
    TOKEN_EXCHANGE_TIMEOUT: float = 30.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("TOKEN_ENCRYPTION_KEY")
    @classmethod
    def check_encryption_key(cls, v):
        if not v or v.strip() == "":
            logger.warning("TOKEN_ENCRYPTION_KEY is not set - provider tokens will be stored without encryption")
            return v
        if len(v.encode("utf-8")) != 32:
            logger.error("TOKEN_ENCRYPTION_KEY must be exactly 32 bytes - startup will fail")
        return v

    @model_validator(mode="after")
    def assemble_database_url(self):
        """Build DATABASE_URL from the POSTGRES_* variables when it is not given directly"""
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}?sslmode=disable"
            )
        return self

    @property
    def allowed_twitter_hosts(self) -> List[str]:
        return [h.strip().lower() for h in self.TWITTER_ALLOWED_HOSTS.split(",") if h.strip()]

    @property
    def cors_origins(self) -> List[str]:
        origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        if not origins:
            origins = [self.BASE_URL]
        return origins


# Create global settings instance
settings = Settings()

# --- Module-level Constants (Extracted from settings) ---
ENVIRONMENT = settings.ENVIRONMENT

# Derived constants
SPOTIFY_SCOPES = ["user-read-currently-playing", "user-read-playback-state"]
SPOTIFY_PLAYER_URL = f"{settings.SPOTIFY_API_BASE}/me/player?market=JP"
SPOTIFY_ME_URL = f"{settings.SPOTIFY_API_BASE}/me"

MISSKEY_PERMISSIONS = ["write:notes", "read:account"]

TWITTER_AUTH_URL = "https://x.com/i/oauth2/authorize"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_USERS_ME_URL = "https://api.twitter.com/2/users/me"
TWITTER_TWEETS_URL = "https://api.twitter.com/2/tweets"
TWITTER_SCOPES = ["tweet.read", "tweet.write", "users.read", "offline.access"]
