"""Battle Stats Sync - FastAPI service.

Keeps a participant's battle statistics reconciled with the remote stats
store and serves the derived metrics over HTTP.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .api import api_router
from .services.realtime import RealtimeClient
from .services.reconciliation import ObservedIdentity, ReconciliationEngine
from .services.rest_client import RestFallbackClient
from .services.state_store import JsonStateStore
from .services.sync_channel import SyncChannel

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    logger.info(f"Starting {settings.app_name}...")

    state_store = JsonStateStore(settings.state_file, access_key=settings.access_key)
    fallback = RestFallbackClient(settings.rest_base_url, timeout=settings.request_timeout)

    realtime = None
    if settings.access_key:
        realtime = RealtimeClient(
            settings.websocket_url,
            settings.access_key,
            reconnect_attempts=settings.reconnect_attempts,
            reconnect_delay=settings.reconnect_delay,
        )
    else:
        logger.error("Access key not found, WebSocket not initialized.")

    channel = SyncChannel(
        realtime=realtime,
        fallback=fallback,
        fallback_window=settings.save_fallback_window,
        pull_timeout=settings.pull_timeout,
    )
    engine = ReconciliationEngine(
        channel,
        state_store,
        identity=ObservedIdentity(player_id=settings.player_id, player_name=settings.player_name),
        settings=settings,
    )
    app.state.engine = engine

    realtime_task = None
    if realtime is not None:
        # The connect handler performs the initial load
        engine.attach_realtime(realtime)
        realtime_task = asyncio.create_task(realtime.run())
    else:
        await engine.load_from_server()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await engine.aclose()
    if realtime is not None:
        await realtime.close()
    if realtime_task is not None:
        realtime_task.cancel()
        try:
            await realtime_task
        except asyncio.CancelledError:
            pass
    await fallback.close()
    engine.save_state()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="""
    Battle Stats Sync API.

    Features:
    - Live battle, player and team totals
    - Best and worst completed battle
    - statsUpdated change stream (SSE)
    - Refresh from and clear the remote stats store
    - Game client event ingress
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# CORS configuration - allow the stats widget and localhost
cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

widget_url = os.environ.get("WIDGET_URL")
if widget_url:
    cors_origins.append(widget_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=f"/api/{settings.api_version}")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    engine = getattr(app.state, "engine", None)
    connected = bool(engine and engine.channel.realtime_connected)
    return {"status": "healthy", "realtime_connected": connected}


# For running with uvicorn directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "battle_stats.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=True,
    )
