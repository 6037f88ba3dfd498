"""Job sync service - FastAPI application around the sync engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobsync.config import Settings, settings
from jobsync.api.v1.router import v1_router
from jobsync.api.v1 import jobs as jobs_api
from jobsync.channels.backend.supabase_backend import SupabaseGenerationBackend
from jobsync.channels.compositor.base import RetryingCompositor
from jobsync.channels.compositor.server_stitch import ServerStitchCompositor
from jobsync.channels.ledger.supabase_ledger import SupabaseLedger
from jobsync.channels.push.base import PushChannel
from jobsync.channels.push.queue_channel import QueuePushChannel
from jobsync.channels.push.websocket_channel import WebSocketPushChannel
from jobsync.channels.store.supabase_store import SupabaseJobStore
from jobsync.logging_utils import setup_logging
from jobsync.sync.engine import JobSyncEngine

logger = logging.getLogger(__name__)


def build_push_channel(config: Settings) -> PushChannel:
    if config.push_mode == "websocket" and config.push_ws_url:
        return WebSocketPushChannel(
            config.push_ws_url,
            max_reconnect_attempts=config.push_max_reconnect_attempts,
            reconnect_delay=config.push_reconnect_delay_seconds,
        )
    return QueuePushChannel()


def build_engine(config: Settings = settings) -> JobSyncEngine:
    """Engine wired to Supabase for the configured owner."""
    if not config.owner_id:
        raise RuntimeError("OWNER_ID must be set")
    compositor = RetryingCompositor(
        ServerStitchCompositor(config.owner_id),
        max_retries=config.compositor_max_retries,
        initial_delay=config.compositor_initial_delay_seconds,
        max_delay=config.compositor_max_delay_seconds,
        backoff_multiplier=config.compositor_backoff_multiplier,
    )
    return JobSyncEngine(
        user_id=config.owner_id,
        store=SupabaseJobStore(),
        push_channel=build_push_channel(config),
        ledger=SupabaseLedger(config.owner_id),
        backend=SupabaseGenerationBackend(),
        compositor=compositor,
        config=config,
    )


# Global engine reference
_engine = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    global _engine

    setup_logging("jobsync", settings.log_level)
    logger.info(f"Starting job sync service on port {settings.api_port}")
    logger.info(f"Push mode: {settings.push_mode}")

    _engine = build_engine(settings)
    await _engine.start()
    jobs_api.set_engine(_engine)

    yield

    logger.info("Shutting down job sync service")
    jobs_api.set_engine(None)
    await _engine.stop()


app = FastAPI(
    title="Job Sync Service",
    description="Keeps a local view of generation jobs in sync with the job store",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router)
