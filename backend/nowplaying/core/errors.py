"""Exception classes for the NowPlaying backend

Exception Hierarchy:
    NowPlayingError (base)
        ConfigurationError - encryption key / signing secret problems
            InvalidKeyError
        ValidationFailedError - missing or malformed request input
        AuthenticationError - session and header-token failures
            MissingTokenError, InvalidTokenError, ExpiredTokenError
            SessionAuthError, HeaderTokenError
        UpstreamError - non-2xx or transport failure from a third party
            SpotifyAPIError
        StoreError - database faults
            UserNotFoundError
        CipherError - resolved internally, never shown to end users
            InvalidCiphertextError, DecryptionError
        OAuthFlowError - a flow step failed; carries a short reason code
            TwitterNotAvailableError, TwitterNotEligibleError
        PostError - the post-now-playing endpoint refused the request

Internal code raises these; only the API layer turns them into status
codes and response bodies.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class NowPlayingError(Exception):
    """Base exception - every error carries a kind and optional details for logging"""
    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "", details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ============================================================================
# CONFIGURATION
# ============================================================================

class ConfigurationError(NowPlayingError):
    kind = "configuration"


class InvalidKeyError(ConfigurationError):
    """Encryption key is not exactly 32 bytes"""

    def __init__(self, message: str = "encryption key must be 32 bytes for AES-256", details: Optional[dict] = None) -> None:
        super().__init__(message, details)


# ============================================================================
# VALIDATION
# ============================================================================

class ValidationFailedError(NowPlayingError):
    kind = "validation"
    status_code = 400


# ============================================================================
# AUTHENTICATION
# ============================================================================

class AuthenticationError(NowPlayingError):
    kind = "authentication"
    status_code = 401


class MissingTokenError(AuthenticationError):
    def __init__(self, message: str = "missing token", details: Optional[dict] = None) -> None:
        super().__init__(message, details)


class InvalidTokenError(AuthenticationError):
    def __init__(self, message: str = "invalid token", details: Optional[dict] = None) -> None:
        super().__init__(message, details)


class ExpiredTokenError(AuthenticationError):
    def __init__(self, message: str = "token has expired", details: Optional[dict] = None) -> None:
        super().__init__(message, details)


class SessionAuthError(AuthenticationError):
    """Raised by the session gate; reason is returned to the client as-is"""

    def __init__(self, reason: str, clear_cookie: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.clear_cookie = clear_cookie


class HeaderTokenError(AuthenticationError):
    """Authorization header missing or wrong on the post endpoint"""


# ============================================================================
# UPSTREAM PROVIDERS
# ============================================================================

class UpstreamError(NowPlayingError):
    kind = "upstream"
    status_code = 502

    def __init__(self, message: str = "", status_code: Optional[int] = None, details: Optional[dict] = None) -> None:
        super().__init__(message, details)
        self.upstream_status = status_code


class SpotifyAPIError(UpstreamError):
    """Non-2xx response from the Spotify Web API / accounts service"""

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"spotify API error: {status_code}", status_code=status_code)
        self.status_code = status_code

    def __str__(self) -> str:
        return f"spotify API error (status {self.status_code}): {self.message}"

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_retryable(self) -> bool:
        """Provider-side failures can be retried by the user starting the flow again"""
        return self.status_code >= 500


# ============================================================================
# STORE
# ============================================================================

class StoreError(NowPlayingError):
    kind = "store"


class UserNotFoundError(StoreError):
    status_code = 404

    def __init__(self, message: str = "user not found", details: Optional[dict] = None) -> None:
        super().__init__(message, details)


# ============================================================================
# CIPHER
# ============================================================================

class CipherError(NowPlayingError):
    kind = "decryption"


class InvalidCiphertextError(CipherError):
    def __init__(self, message: str = "invalid ciphertext", details: Optional[dict] = None) -> None:
        super().__init__(message, details)


class DecryptionError(CipherError):
    def __init__(self, message: str = "decryption failed", details: Optional[dict] = None) -> None:
        super().__init__(message, details)


# ============================================================================
# FLOWS
# ============================================================================

class OAuthFlowError(NowPlayingError):
    """A flow step failed - reason is a short machine-readable code"""
    kind = "flow"
    status_code = 400

    def __init__(self, reason: str, message: str = "", retryable: bool = False, status_code: Optional[int] = None) -> None:
        super().__init__(message or reason, {"reason": reason})
        self.reason = reason
        self.retryable = retryable
        if status_code is not None:
            self.status_code = status_code


class TwitterNotAvailableError(OAuthFlowError):
    def __init__(self) -> None:
        super().__init__("twitter_not_available", "Twitter integration is not available", status_code=403)


class TwitterNotEligibleError(OAuthFlowError):
    def __init__(self, reason: str) -> None:
        super().__init__("not_eligible", reason, status_code=403)
        self.eligibility_reason = reason


class PostError(NowPlayingError):
    kind = "flow"

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


# ============================================================================
# BEST-EFFORT OPERATIONS
# ============================================================================

@dataclass
class BestEffortOutcome:
    """Result of an operation whose failure is safe to ignore"""
    succeeded: bool
    error: Optional[Exception] = None


def best_effort(operation: Callable[[], object], description: str) -> BestEffortOutcome:
    """Run a cleanup-style store operation

    A StoreError is "failed but safe to ignore": it is logged and reported in
    the outcome. Any other exception is a bug and propagates.
    """
    try:
        operation()
        return BestEffortOutcome(succeeded=True)
    except StoreError as e:
        logger.warning(f"Best-effort operation failed ({description}): {e}")
        return BestEffortOutcome(succeeded=False, error=e)
