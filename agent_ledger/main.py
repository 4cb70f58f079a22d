"""Agent ledger FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import asyncio

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent_ledger import config
from agent_ledger.routers.api import ledger_router, tasks_router
from agent_ledger.routers.cache import cache_router
from agent_ledger.routers.events import events_router

from agent_ledger.db import connection, sqlite_migrations
from agent_ledger.db.file_watcher import file_watcher
from agent_ledger.db.sync_engine import SyncEngine
from agent_ledger.parsers.log_reader import LogReader
from agent_ledger.services.dashboard import DashboardService
from agent_ledger.services.notifier import ChangeNotifier
from agent_ledger.observability import initialize as initialize_observability, shutdown as shutdown_observability

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Agent ledger starting up")
    initialize_observability(app)

    # 1. Initialize DB connection
    db = await connection.get_connection()

    # 2. Run migrations
    await sqlite_migrations.run_migrations(db)

    # 3. Restore ledgers and checkpoints
    sync = SyncEngine(db, LogReader(config.SESSIONS_DIRS))
    await sync.load_state()
    app.state.sync_engine = sync

    # 4. Query surface and push channel
    dashboard = DashboardService(sync)
    notifier = ChangeNotifier(dashboard.snapshot)
    sync.add_listener(notifier.on_sync)
    dashboard.add_change_listener(notifier.notify)
    app.state.dashboard = dashboard
    app.state.notifier = notifier

    # 5. Catch-up sync (background task)
    async def _run_startup_sync() -> None:
        delay = max(0, config.STARTUP_SYNC_DELAY_SECONDS)
        if delay > 0:
            await asyncio.sleep(delay)
        await sync.sync_all()

    # Keep reference to cancel on shutdown.
    app.state.sync_task = asyncio.create_task(_run_startup_sync())

    # 6. Start File Watcher
    await file_watcher.start(sync, config.SESSIONS_DIRS)

    yield

    logger.info("Agent ledger shutting down")

    app.state.sync_task.cancel()
    try:
        await app.state.sync_task
    except asyncio.CancelledError:
        pass

    await file_watcher.stop()
    await notifier.close()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="Agent Ledger API",
    description="Live task, cost, activity and journal ledgers derived from agent transcripts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the dashboard frontend
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
app.include_router(tasks_router)
app.include_router(ledger_router)
app.include_router(events_router)
app.include_router(cache_router)
