"""Background task that sweeps expired OAuth handshake sessions"""
import asyncio
from typing import Dict, Optional

from sqlalchemy.orm import Session

from nowplaying.core.config import settings
from nowplaying.core.errors import StoreError
from nowplaying.core.logging import cleanup_logger
from nowplaying.core.metrics import cleanup_runs_counter, cleanup_sessions_removed_counter
from nowplaying.db.session import SessionLocal
from nowplaying.db.store import CredentialStore


def run_session_cleanup(db: Session) -> Optional[Dict[str, int]]:
    """Delete expired MiAuth / PKCE sessions once

    Failures are logged and reported as None; the next run retries.
    """
    try:
        removed = CredentialStore(db).cleanup_expired_sessions()
    except StoreError as e:
        cleanup_runs_counter.labels(status="error").inc()
        cleanup_logger.warning(f"Session cleanup failed: {e}")
        return None

    cleanup_runs_counter.labels(status="success").inc()
    for kind, count in removed.items():
        if count:
            cleanup_sessions_removed_counter.labels(kind=kind).inc(count)
    if any(removed.values()):
        cleanup_logger.info(f"Removed expired handshake sessions: {removed}")
    return removed


def _cleanup_once() -> Optional[Dict[str, int]]:
    db = SessionLocal()
    try:
        return run_session_cleanup(db)
    finally:
        db.close()


async def cleanup_task(interval_seconds: Optional[int] = None):
    """Run the sweep forever, every SESSION_CLEANUP_INTERVAL_SECONDS"""
    interval = interval_seconds or settings.SESSION_CLEANUP_INTERVAL_SECONDS
    cleanup_logger.info(f"Session cleanup task running every {interval}s")
    while True:
        try:
            await asyncio.sleep(interval)
            await asyncio.to_thread(_cleanup_once)
        except asyncio.CancelledError:
            cleanup_logger.info("Session cleanup task stopped")
            raise
        except Exception as e:
            cleanup_runs_counter.labels(status="error").inc()
            cleanup_logger.error(f"Error in cleanup task: {e}", exc_info=True)
