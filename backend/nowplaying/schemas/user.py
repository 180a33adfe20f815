"""Read models returned by the credential store - tokens are already decrypted"""
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    spotify_user_id: str

    spotify_access_token: Optional[str] = None
    spotify_refresh_token: Optional[str] = None
    spotify_token_expires_at: Optional[datetime] = None

    misskey_instance_url: Optional[str] = None
    misskey_access_token: Optional[str] = None
    misskey_user_id: Optional[str] = None
    misskey_username: Optional[str] = None
    misskey_avatar_url: Optional[str] = None
    misskey_host: Optional[str] = None

    twitter_access_token: Optional[str] = None
    twitter_refresh_token: Optional[str] = None
    twitter_token_expires_at: Optional[datetime] = None
    twitter_user_id: Optional[str] = None
    twitter_username: Optional[str] = None
    twitter_avatar_url: Optional[str] = None

    api_url_token: uuid.UUID
    api_header_token_hash: Optional[str] = None
    api_header_token_enabled: bool = False

    created_at: datetime
    updated_at: datetime

    @property
    def spotify_connected(self) -> bool:
        return bool(self.spotify_access_token)

    @property
    def misskey_connected(self) -> bool:
        return bool(self.misskey_access_token and self.misskey_instance_url)

    @property
    def twitter_connected(self) -> bool:
        return bool(self.twitter_access_token)


class MiAuthSessionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: uuid.UUID
    session_id: uuid.UUID
    instance_url: str
    created_at: datetime
    expires_at: datetime


class TwitterPKCESessionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: uuid.UUID
    state: str
    code_verifier: str
    created_at: datetime
    expires_at: datetime


class TwitterEligibility(BaseModel):
    eligible: bool
    reason: Optional[str] = None
