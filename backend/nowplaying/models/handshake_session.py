"""Short-lived OAuth handshake sessions"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from nowplaying.models.base import Base


class MiAuthSession(Base):
    """Pending Misskey MiAuth request, correlated by the session id in the callback"""
    __tablename__ = "miauth_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(Uuid, unique=True, nullable=False, index=True)
    instance_url = Column(String(512), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    user = relationship("User", back_populates="miauth_sessions")


class TwitterPKCESession(Base):
    """Pending Twitter OAuth 2.0 request, correlated by the state parameter"""
    __tablename__ = "twitter_pkce_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    state = Column(String(255), unique=True, nullable=False, index=True)
    code_verifier = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    user = relationship("User", back_populates="twitter_pkce_sessions")
