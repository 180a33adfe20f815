"""Pydantic schemas for request and response bodies"""
import uuid
from typing import Dict, Optional

from pydantic import BaseModel

from nowplaying.schemas.user import TwitterEligibility


class AuthCheckResponse(BaseModel):
    authenticated: bool
    user_id: Optional[str] = None
    spotify_user_id: Optional[str] = None


class MiAuthStartRequest(BaseModel):
    instance_url: str


class AuthURLResponse(BaseModel):
    auth_url: str


class UserInfoResponse(BaseModel):
    id: str
    spotify_user_id: str
    spotify_display_name: Optional[str] = None
    spotify_image_url: Optional[str] = None

    misskey_connected: bool
    misskey_instance_url: Optional[str] = None
    misskey_user_id: Optional[str] = None
    misskey_username: Optional[str] = None
    misskey_avatar_url: Optional[str] = None
    misskey_host: Optional[str] = None

    twitter_connected: bool
    twitter_user_id: Optional[str] = None
    twitter_username: Optional[str] = None
    twitter_avatar_url: Optional[str] = None

    api_url_token: uuid.UUID
    api_header_token_enabled: bool


class HeaderTokenResponse(BaseModel):
    token: str
    message: str


class APIURLTokenResponse(BaseModel):
    api_url_token: uuid.UUID


class ConfigResponse(BaseModel):
    twitter_available: bool
    twitter_eligibility: Optional[TwitterEligibility] = None


class PostResult(BaseModel):
    success: bool
    message: str
    results: Dict[str, str] = {}
