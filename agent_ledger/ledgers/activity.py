"""Activity log and agent presence."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from agent_ledger import config
from agent_ledger.date_utils import format_iso, parse_timestamp
from agent_ledger.ledgers.base import KeyedLedger
from agent_ledger.models import ActivityItem, AgentInfo, AgentPresence, EventKind, SessionEvent
from agent_ledger.parsers.classifiers import extract_usage
from agent_ledger.parsers.error_classifier import classify_error


def _clip(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _tool_arguments(call) -> str:
    if call.rawArguments:
        return call.rawArguments[:150]
    return json.dumps(call.arguments, separators=(",", ":"))[:150]


def activity_items(event: SessionEvent) -> list[ActivityItem]:
    """Activity rows an event contributes. Events without a timestamp contribute none."""
    if event.timestamp is None:
        return []
    payload = event.payload
    base_id = payload.entryId or f"{event.sessionId}-{event.generation}-{event.sequence}"
    common = {"createdAt": format_iso(event.timestamp), "session": event.sessionId[:8]}
    items: list[ActivityItem] = []

    if event.kind == EventKind.SESSION_START:
        label = (payload.entryId or event.sessionId)[:8]
        items.append(ActivityItem(id=base_id, action="Session started", details=f"Session {label}", **common))
    elif event.kind == EventKind.MODEL_CHANGE:
        items.append(
            ActivityItem(id=base_id, action="Model changed", details=f"{payload.provider}/{payload.model}", **common)
        )
    elif event.kind == EventKind.USER_MESSAGE:
        items.append(
            ActivityItem(id=base_id, agent="user", action="User message", details=_clip(payload.text, 200), **common)
        )
    elif event.kind == EventKind.TOOL_CALL:
        for index, call in enumerate(payload.toolCalls):
            suffix = call.id or str(index)
            items.append(
                ActivityItem(
                    id=f"{base_id}-{suffix}",
                    action=f"Tool: {call.name or 'tool'}",
                    details=_tool_arguments(call),
                    **common,
                )
            )
    elif event.kind == EventKind.ASSISTANT_MESSAGE:
        if payload.text.strip():
            items.append(
                ActivityItem(
                    id=base_id,
                    action="Assistant response",
                    details=_clip(payload.text, 200),
                    level="success",
                    **common,
                )
            )
    elif event.kind == EventKind.TOOL_RESULT:
        failed = payload.isError or classify_error(payload.text) is not None
        items.append(
            ActivityItem(
                id=base_id,
                action=f"Result: {payload.toolName or 'tool'}",
                details=_clip(payload.text, 150),
                level="error" if failed else "info",
                **common,
            )
        )
    elif event.kind == EventKind.ERROR:
        items.append(ActivityItem(id=base_id, action="Error", details=_clip(payload.text, 200), level="error", **common))

    usage = extract_usage(event)
    if usage is not None and usage.cost:
        items.append(
            ActivityItem(
                id=f"{base_id}-cost",
                action="API cost",
                details=f"${usage.cost:.4f} ({usage.total_tokens} tokens) - {usage.model}",
                **common,
            )
        )
    return items


class ActivityLog(KeyedLedger):
    name = "activity"

    def __init__(self, retention: int = config.ACTIVITY_RETENTION):
        super().__init__()
        self.retention = retention
        self.items: dict[str, ActivityItem] = {}
        self.presence: dict[str, AgentPresence] = {}
        self.presence_changed = False

    def fold(self, events: list[SessionEvent]) -> bool:
        changed = False
        for event in events:
            if self.already_applied(event):
                continue
            for item in activity_items(event):
                if item.id not in self.items:
                    self.items[item.id] = item
                    self.mark_upsert(item.id)
                    changed = True
            self._track_presence(event)
            self.advance(event)
        if changed:
            self._prune()
        return changed

    def _track_presence(self, event: SessionEvent) -> None:
        if event.timestamp is None:
            return
        presence = self.presence.get(event.sessionId)
        if presence is None:
            presence = AgentPresence(sessionId=event.sessionId)
            self.presence[event.sessionId] = presence
        updated = False
        stamp = format_iso(event.timestamp)
        if stamp > presence.lastActive:
            presence.lastActive = stamp
            updated = True
        payload = event.payload
        if event.kind == EventKind.MODEL_CHANGE or (payload.model and payload.role == "assistant"):
            if payload.model and payload.model != presence.model:
                presence.model = payload.model
                updated = True
            if payload.provider and payload.provider != presence.provider:
                presence.provider = payload.provider
                updated = True
        if updated:
            self.mark_extra("presence", event.sessionId)
            self.presence_changed = True

    def _prune(self) -> None:
        overflow = len(self.items) - self.retention
        if overflow <= 0:
            return
        oldest = sorted(self.items.values(), key=lambda i: (i.createdAt, i.id))[:overflow]
        for item in oldest:
            del self.items[item.id]
            self.mark_delete(item.id)

    def take_presence_changed(self) -> bool:
        changed, self.presence_changed = self.presence_changed, False
        return changed

    def clear(self) -> None:
        super().clear()
        self.items.clear()
        self.presence.clear()
        self.presence_changed = False

    def load(self, items: Iterable[ActivityItem], presence: Iterable[AgentPresence]) -> None:
        for item in items:
            self.items[item.id] = item
        for row in presence:
            self.presence[row.sessionId] = row

    def recent(self, limit: int = config.ACTIVITY_DEFAULT_LIMIT) -> list[ActivityItem]:
        ordered = sorted(self.items.values(), key=lambda i: (i.createdAt, i.id), reverse=True)
        return [item.model_copy() for item in ordered[: max(0, limit)]]

    def agents(self, now: Optional[datetime] = None) -> list[AgentInfo]:
        """Main agent roster entry derived from the most recently active session."""
        if not self.presence:
            return []
        latest = max(self.presence.values(), key=lambda p: (p.lastActive, p.sessionId))
        model = next(
            (p.model for p in sorted(self.presence.values(), key=lambda p: p.lastActive, reverse=True) if p.model),
            "",
        )
        provider = latest.provider or next((p.provider for p in self.presence.values() if p.provider), "")
        now = now or datetime.now(timezone.utc)
        last_active = parse_timestamp(latest.lastActive)
        online = last_active is not None and now - last_active <= timedelta(minutes=config.AGENT_ONLINE_MINUTES)
        return [
            AgentInfo(
                model=model or "unknown",
                provider=provider or "unknown",
                status="online" if online else "offline",
                lastActive=latest.lastActive,
                session=latest.sessionId,
                totalSessions=len(self.presence),
            )
        ]
