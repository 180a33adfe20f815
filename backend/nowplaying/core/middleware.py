"""Middleware configuration for FastAPI application"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nowplaying.core.config import settings
from nowplaying.core.logging import api_access_logger, mask_token
from nowplaying.core.metrics import http_request_duration_histogram, http_requests_counter

logger = logging.getLogger(__name__)


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = list(settings.cors_origins)
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:5173",
            "http://localhost:8080",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:8080"
        ])
    return allowed_origins


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


def _route_path(request: Request) -> str:
    # Route template keeps capability tokens out of metric labels
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def log_api_access(request: Request, status_code: int, duration: float, error: Optional[str] = None):
    """Log one JSON line per request"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": _route_path(request),
        "session": mask_token(request.cookies.get(settings.SESSION_COOKIE_NAME)),
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "duration_ms": round(duration * 1000, 2),
        "error": error
    }

    if error or status_code >= 500:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")


async def access_log_middleware(request: Request, call_next):
    """Record request metrics and write the access log"""
    start = time.monotonic()
    status_code = 500
    error = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = str(e)
        raise
    finally:
        duration = time.monotonic() - start
        path = _route_path(request)
        if path != "/metrics":
            http_requests_counter.labels(method=request.method, path=path, status=str(status_code)).inc()
            http_request_duration_histogram.labels(method=request.method, path=path).observe(duration)
        log_api_access(request, status_code, duration, error)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
