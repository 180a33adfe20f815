"""User model"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, Text, Uuid
from sqlalchemy.orm import relationship

from nowplaying.models.base import Base


class User(Base):
    """One row per linked Spotify account, plus its Misskey/Twitter links"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    spotify_user_id = Column(String(255), unique=True, nullable=False, index=True)

    # Spotify (tokens encrypted)
    spotify_access_token = Column(Text)
    spotify_refresh_token = Column(Text)
    spotify_token_expires_at = Column(DateTime(timezone=True))

    # Misskey (access token encrypted)
    misskey_instance_url = Column(String(512))
    misskey_access_token = Column(Text)
    misskey_user_id = Column(String(255))
    misskey_username = Column(String(255))
    misskey_avatar_url = Column(Text)
    misskey_host = Column(String(255))

    # Twitter (tokens encrypted)
    twitter_access_token = Column(Text)
    twitter_refresh_token = Column(Text)
    twitter_token_expires_at = Column(DateTime(timezone=True))
    twitter_user_id = Column(String(255))
    twitter_username = Column(String(255))
    twitter_avatar_url = Column(Text)

    # API exposure - header token is stored as a SHA-256 hex digest only
    api_url_token = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    api_header_token_hash = Column(String(64))
    api_header_token_enabled = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    miauth_sessions = relationship("MiAuthSession", back_populates="user", cascade="all, delete-orphan")
    twitter_pkce_sessions = relationship("TwitterPKCESession", back_populates="user", cascade="all, delete-orphan")
