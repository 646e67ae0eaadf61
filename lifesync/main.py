"""LifeSync FastAPI Backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lifesync import config
from lifesync.routers.entities import entities_router
from lifesync.routers.sync import sync_router

from lifesync.db import connection, migrations
from lifesync.observability import initialize as initialize_observability, shutdown as shutdown_observability
from lifesync.reasoning import OllamaReasoningClient
from lifesync.state_store import SyncStateStore
from lifesync.sync.orchestrator import SyncService
from lifesync.sync.scheduler import SyncScheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("lifesync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("LifeSync backend starting up")
    initialize_observability(app)

    # 1. Initialize DB connection
    db = await connection.get_connection()
    app.state.db = db

    # 2. Run migrations
    await migrations.run_migrations(db)

    # 3. Sync service with persisted settings + history
    service = SyncService(
        db,
        reasoning=OllamaReasoningClient(),
        state_store=SyncStateStore(config.STATE_PATH),
    )
    await service.load_issues()
    app.state.sync_service = service

    # 4. Triggers
    scheduler = SyncScheduler(service)
    app.state.sync_scheduler = scheduler
    if config.SCHEDULER_ENABLED:
        await scheduler.start()

    yield

    logger.info("LifeSync backend shutting down")
    await scheduler.stop()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="LifeSync API",
    description="Consistency engine for the LifeSync goal and task graph",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(sync_router)
app.include_router(entities_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    scheduler = getattr(app.state, "sync_scheduler", None)
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("lifesync.main:app", host=config.HOST, port=config.PORT)
