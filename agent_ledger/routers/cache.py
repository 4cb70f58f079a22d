"""Cache + sync observability API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from pydantic import BaseModel

from agent_ledger.db.file_watcher import file_watcher

logger = logging.getLogger("ledger.cache")

cache_router = APIRouter(prefix="/api/cache", tags=["cache"])


class SyncRequest(BaseModel):
    background: bool = False
    trigger: str = "api"


def _get_sync_engine(request: Request):
    sync_engine = getattr(request.app.state, "sync_engine", None)
    if not sync_engine:
        raise HTTPException(status_code=503, detail="Sync engine not initialized")
    return sync_engine


@cache_router.get("/status")
async def get_cache_status(request: Request):
    """Return sync engine + watcher status with every source checkpoint."""
    sync_engine = _get_sync_engine(request)
    return {
        "status": "active",
        "sync_engine": "ready",
        "watcher": "running" if file_watcher.is_running else "stopped",
        "watchedDirs": [str(d) for d in file_watcher.watched_dirs],
        **sync_engine.status(),
    }


@cache_router.post("/sync")
async def trigger_sync(request: Request, background_tasks: BackgroundTasks, body: SyncRequest | None = None):
    """Catch up every transcript source from its checkpoint."""
    sync_engine = _get_sync_engine(request)
    body = body or SyncRequest()
    logger.info(f"Sync requested (trigger={body.trigger}, background={body.background})")

    if body.background:
        background_tasks.add_task(sync_engine.sync_all)
        return {"status": "ok", "mode": "background", "message": "Sync triggered in background"}

    outcome = await sync_engine.sync_all()
    return {"status": "ok", "mode": "foreground", "stats": outcome.as_dict()}


@cache_router.post("/rebuild")
async def trigger_rebuild(request: Request, background_tasks: BackgroundTasks, body: SyncRequest | None = None):
    """Drop checkpoints and derived ledgers and re-read every source from line 0. Todos survive."""
    sync_engine = _get_sync_engine(request)
    body = body or SyncRequest()
    logger.info(f"Rebuild requested (trigger={body.trigger}, background={body.background})")

    if body.background:
        background_tasks.add_task(sync_engine.rebuild)
        return {"status": "ok", "mode": "background", "message": "Rebuild triggered in background"}

    outcome = await sync_engine.rebuild()
    return {"status": "ok", "mode": "foreground", "stats": outcome.as_dict()}
