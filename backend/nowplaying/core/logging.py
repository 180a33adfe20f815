"""Logging configuration for the application"""
import logging

from nowplaying.core.config import settings


def setup_logging():
    """Configure logging for the application"""
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str = __name__):
    """Get a logger by name"""
    return logging.getLogger(name)


def mask_token(token) -> str:
    """Shorten a secret for log output - never log credentials in full"""
    if not token:
        return "<none>"
    token = str(token)
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-2:]}"


# Export commonly used loggers
cleanup_logger = logging.getLogger("cleanup")
spotify_logger = logging.getLogger("spotify")
misskey_logger = logging.getLogger("misskey")
twitter_logger = logging.getLogger("twitter")
security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")
