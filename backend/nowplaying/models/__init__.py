"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from nowplaying.models.base import Base
from nowplaying.models.user import User
from nowplaying.models.handshake_session import MiAuthSession, TwitterPKCESession

# Export all for convenience
__all__ = ["Base", "User", "MiAuthSession", "TwitterPKCESession"]
