"""API routers for the task board, costs, activity, agents and the daily journal."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from agent_ledger import config
from agent_ledger.date_utils import parse_date, today_key
from agent_ledger.db import connection
from agent_ledger.db.file_watcher import file_watcher
from agent_ledger.models import (
    ActivityItem,
    AgentInfo,
    CostSummary,
    JournalEntry,
    TaskBoard,
    TodoItem,
)

tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])
ledger_router = APIRouter(prefix="/api", tags=["ledger"])


class TodoCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""


class TodoDeleteRequest(BaseModel):
    id: str = Field(..., min_length=1)


def _get_dashboard(request: Request):
    dashboard = getattr(request.app.state, "dashboard", None)
    if not dashboard:
        raise HTTPException(status_code=503, detail="Ledger service not initialized")
    return dashboard


def _validated_date(raw: Optional[str]) -> Optional[str]:
    if raw is None or raw == "":
        return None
    day = parse_date(raw)
    if day is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {raw!r} (expected YYYY-MM-DD)")
    return day.isoformat()


# ── Tasks router ────────────────────────────────────────────────────

@tasks_router.get("", response_model=TaskBoard)
async def get_tasks(request: Request, date: Optional[str] = Query(None, description="YYYY-MM-DD spawn date")):
    """Task board: UI todos plus derived subagent tasks."""
    dashboard = _get_dashboard(request)
    return await dashboard.get_tasks(_validated_date(date))


@tasks_router.post("", response_model=TodoItem, status_code=201)
async def create_todo(request: Request, body: TodoCreateRequest):
    dashboard = _get_dashboard(request)
    return await dashboard.record_todo_create(body.title.strip(), body.description)


@tasks_router.delete("")
async def delete_todo(request: Request, body: TodoDeleteRequest):
    dashboard = _get_dashboard(request)
    if not await dashboard.record_todo_delete(body.id):
        raise HTTPException(status_code=404, detail=f"Todo not found: {body.id}")
    return {"status": "ok", "id": body.id}


# ── Ledger views ────────────────────────────────────────────────────

@ledger_router.get("/costs", response_model=CostSummary)
async def get_costs(request: Request):
    return await _get_dashboard(request).get_costs()


@ledger_router.get("/activity", response_model=list[ActivityItem])
async def get_activity(request: Request, limit: int = Query(config.ACTIVITY_DEFAULT_LIMIT, ge=1, le=1000)):
    """Most recent activity items, newest first."""
    return await _get_dashboard(request).get_activity(limit)


@ledger_router.get("/agents", response_model=list[AgentInfo])
async def get_agents(request: Request):
    return await _get_dashboard(request).get_agents()


@ledger_router.get("/journal", response_model=JournalEntry)
async def get_journal(request: Request, date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today (UTC)")):
    """Synthesized journal for one day."""
    dashboard = _get_dashboard(request)
    return await dashboard.get_journal(_validated_date(date) or today_key())


@ledger_router.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "watcher": "running" if file_watcher.is_running else "stopped",
    }
