"""Server-sent event stream of ledger changes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import StreamingResponse

events_router = APIRouter(prefix="/api", tags=["events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _get_notifier(request: Request):
    notifier = getattr(request.app.state, "notifier", None)
    if not notifier:
        raise HTTPException(status_code=503, detail="Change notifier not initialized")
    return notifier


@events_router.get("/events")
async def stream_events(request: Request, last_event_id: Optional[str] = Header(None, alias="Last-Event-ID")):
    """Full snapshot of every category on connect, then debounced updates and heartbeats."""
    notifier = _get_notifier(request)
    return StreamingResponse(
        notifier.events(last_event_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
