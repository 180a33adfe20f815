"""Twitter integration availability and per-user eligibility"""
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse

from nowplaying.core.config import Settings, settings as app_settings
from nowplaying.schemas.user import TwitterEligibility

REASON_DISABLED = "disabled"
REASON_CREDENTIALS_MISSING = "credentials missing"
REASON_MISSKEY_REQUIRED = "misskey connection required"
REASON_HOST_NOT_ALLOWED = "misskey instance not allowed"


def normalize_host(value: str) -> str:
    """Lowercase a host or URL, keeping only the host part of a URL"""
    host = value.strip().lower()
    if "://" in host:
        host = urlparse(host).netloc
    return host.rstrip("/")


@dataclass(frozen=True)
class TwitterConfig:
    enabled: bool = True
    client_id: str = ""
    client_secret: str = ""
    require_misskey: bool = False
    allowed_misskey_hosts: List[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "TwitterConfig":
        s = s or app_settings
        return cls(
            enabled=s.TWITTER_ENABLED,
            client_id=s.TWITTER_CLIENT_ID,
            client_secret=s.TWITTER_CLIENT_SECRET,
            require_misskey=s.TWITTER_REQUIRE_MISSKEY,
            allowed_misskey_hosts=s.allowed_twitter_hosts,
        )

    def is_available(self) -> bool:
        """Enabled and both client credentials configured"""
        return self.enabled and bool(self.client_id) and bool(self.client_secret)

    def check_eligibility(self, misskey_connected: bool, misskey_host: Optional[str]) -> TwitterEligibility:
        """Evaluate the gates in order and report the first one that fails"""
        if not self.enabled:
            return TwitterEligibility(eligible=False, reason=REASON_DISABLED)
        if not self.client_id or not self.client_secret:
            return TwitterEligibility(eligible=False, reason=REASON_CREDENTIALS_MISSING)
        if self.require_misskey and not misskey_connected:
            return TwitterEligibility(eligible=False, reason=REASON_MISSKEY_REQUIRED)
        if self.require_misskey and self.allowed_misskey_hosts:
            allowed = {normalize_host(h) for h in self.allowed_misskey_hosts}
            if normalize_host(misskey_host or "") not in allowed:
                return TwitterEligibility(eligible=False, reason=REASON_HOST_NOT_ALLOWED)
        return TwitterEligibility(eligible=True)
