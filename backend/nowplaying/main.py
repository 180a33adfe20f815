"""FastAPI application entry point"""
import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from nowplaying.core.config import settings
from nowplaying.core.errors import SessionAuthError
from nowplaying.core.logging import get_logger, setup_logging
from nowplaying.core.middleware import access_log_middleware, global_exception_handler, setup_cors_middleware
from nowplaying.core.otel import initialize_otel, instrument_app, setup_otel_logging
from nowplaying.core.security import get_session_config, session_auth_exception_handler
from nowplaying.db.session import engine, init_db
from nowplaying.tasks.cleanup import cleanup_task
from nowplaying.utils.encryption import get_default_cipher

# Import routers
from nowplaying.api import auth, miauth, post, share, twitter
from nowplaying.api import settings as settings_router

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    # Invalid TOKEN_ENCRYPTION_KEY stops startup here
    get_default_cipher()
    get_session_config()

    logger.info("Starting cleanup task...")
    cleanup = asyncio.create_task(cleanup_task())

    yield

    # Shutdown
    logger.info("Shutting down...")
    cleanup.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup


# Create FastAPI app
app = FastAPI(
    title="Spotify NowPlaying Backend",
    description="Share and post what is playing on Spotify to Misskey and X/Twitter",
    version="1.0.0",
    lifespan=lifespan
)

instrument_app(app, engine)
setup_cors_middleware(app)
app.middleware("http")(access_log_middleware)

app.add_exception_handler(SessionAuthError, session_auth_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(auth.router)
app.include_router(miauth.router)
app.include_router(twitter.router)
app.include_router(settings_router.router)
app.include_router(post.router)
app.include_router(share.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
