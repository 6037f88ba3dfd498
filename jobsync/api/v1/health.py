"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

from jobsync.api.v1 import jobs as jobs_api

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health and sync engine state."""
    engine = jobs_api._engine
    engine_info = None
    if engine is not None:
        engine_info = {
            "user_id": engine.user_id,
            "tracked_jobs": len(engine.index),
            "active_jobs": len(engine.index.active()),
            "push_connected": engine.push_listener.is_connected(),
            "poll_interval_seconds": engine.poll_scheduler.interval,
            "polling": engine.poll_scheduler.is_running(),
            "timeout_scan": engine.timeout_sentinel.is_running(),
        }

    return {
        "status": "healthy" if engine is not None else "starting",
        "engine": engine_info,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
