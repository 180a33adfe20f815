"""Shared FastAPI dependencies for routers"""
from typing import Generator, Optional

import httpx
from fastapi import Depends
from sqlalchemy.orm import Session

from nowplaying.db.session import get_db
from nowplaying.db.store import CredentialStore
from nowplaying.services.spotify_client import SpotifyClient
from nowplaying.services.twitter_config import TwitterConfig
from nowplaying.utils.encryption import TokenCipher, get_default_cipher


def get_http_client() -> Generator[httpx.Client, None, None]:
    """Outbound HTTP client for one request; per-call timeouts are set by the services"""
    with httpx.Client() as client:
        yield client


def get_cipher() -> Optional[TokenCipher]:
    return get_default_cipher()


def get_store(db: Session = Depends(get_db), cipher: Optional[TokenCipher] = Depends(get_cipher)) -> CredentialStore:
    return CredentialStore(db, cipher)


def get_spotify_client(http: httpx.Client = Depends(get_http_client)) -> SpotifyClient:
    return SpotifyClient(http)


def get_twitter_config() -> TwitterConfig:
    return TwitterConfig.from_settings()
