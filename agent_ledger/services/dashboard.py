"""Query/command surface over the ledgers, used by the HTTP routers and the notifier."""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from fastapi.encoders import jsonable_encoder

from agent_ledger import config
from agent_ledger.date_utils import date_key, format_iso
from agent_ledger.db.repositories import SqliteTodoRepository
from agent_ledger.db.sync_engine import SyncEngine, SyncOutcome
from agent_ledger.errors import ParseError, SourceUnavailable
from agent_ledger.models import (
    ActivityItem,
    AgentInfo,
    CostSummary,
    JournalEntry,
    SessionEvent,
    TaskBoard,
    TaskStatus,
    TodoItem,
)
from agent_ledger.parsers.events import parse_line
from agent_ledger.services.journal import synthesize

logger = logging.getLogger("ledger")


class DashboardService:
    def __init__(
        self,
        engine: SyncEngine,
        todo_repo: SqliteTodoRepository | None = None,
        journal_cache_size: int = config.JOURNAL_CACHE_SIZE,
    ):
        self.engine = engine
        self.todo_repo = todo_repo or SqliteTodoRepository(engine.db)
        self._journal_cache: OrderedDict[str, JournalEntry] = OrderedDict()
        self._journal_cache_size = max(1, journal_cache_size)
        self._change_listeners: list[Callable[[Iterable[str]], None]] = []
        engine.add_listener(self.on_sync)

    def add_change_listener(self, listener: Callable[[Iterable[str]], None]) -> None:
        self._change_listeners.append(listener)

    def _changed(self, categories: Iterable[str]) -> None:
        for listener in self._change_listeners:
            listener(categories)

    # ── Queries ─────────────────────────────────────────────────────

    async def get_tasks(self, date: Optional[str] = None) -> TaskBoard:
        """Task board. ``date`` filters derived tasks by spawn date; todos are never filtered."""
        todos = await self.todo_repo.list_all()
        tasks = [t.model_copy() for t in self.engine.ledgers.tasks.list_tasks(date)]
        return TaskBoard(
            todo=todos,
            inProgress=[t for t in tasks if t.status == TaskStatus.IN_PROGRESS],
            done=[t for t in tasks if t.status != TaskStatus.IN_PROGRESS],
        )

    async def get_costs(self) -> CostSummary:
        return self.engine.ledgers.costs.summary()

    async def get_activity(self, limit: int = config.ACTIVITY_DEFAULT_LIMIT) -> list[ActivityItem]:
        return self.engine.ledgers.activity.recent(limit)

    async def get_agents(self) -> list[AgentInfo]:
        return self.engine.ledgers.activity.agents()

    async def get_journal(self, date: str) -> JournalEntry:
        cached = self._journal_cache.get(date)
        if cached is not None:
            self._journal_cache.move_to_end(date)
            return cached.model_copy(deep=True)
        events = await asyncio.to_thread(self._events_for_date, date)
        tasks = [t.model_copy() for t in self.engine.ledgers.tasks.list_tasks(date)]
        entry = synthesize(date, events, tasks)
        self._journal_cache[date] = entry
        while len(self._journal_cache) > self._journal_cache_size:
            self._journal_cache.popitem(last=False)
        return entry.model_copy(deep=True)

    def _events_for_date(self, date: str) -> list[SessionEvent]:
        reader = self.engine.reader
        events: list[SessionEvent] = []
        for handle in reader.list_sources():
            try:
                lines = reader.read_all(handle)
            except SourceUnavailable as exc:
                logger.warning(f"Skipping vanished source for journal: {exc}")
                continue
            checkpoint = self.engine.checkpoint(handle.key)
            gen = checkpoint.generation if checkpoint else 0
            for sequence, raw in enumerate(lines):
                try:
                    event = parse_line(raw, handle.session_id, sequence, gen)
                except ParseError:
                    continue
                if event is not None and event.timestamp is not None and date_key(event.timestamp) == date:
                    events.append(event)
        return events

    async def snapshot(self, category: str) -> Any:
        """Full current value of a push category."""
        if category == "tasks":
            board = await self.get_tasks()
        elif category == "costs":
            board = await self.get_costs()
        elif category == "activity":
            board = await self.get_activity()
        elif category == "agents":
            board = await self.get_agents()
        else:
            raise ValueError(f"Unknown category: {category}")
        return jsonable_encoder(board)

    # ── Commands ────────────────────────────────────────────────────

    async def record_todo_create(self, title: str, description: str = "") -> TodoItem:
        todo = TodoItem(
            id=f"todo-{uuid.uuid4().hex[:12]}",
            title=title,
            description=description,
            createdAt=format_iso(datetime.now(timezone.utc)),
        )
        async with self.engine.write_lock:
            await self.todo_repo.create(todo)
        self._changed(["tasks"])
        return todo

    async def record_todo_delete(self, todo_id: str) -> bool:
        async with self.engine.write_lock:
            deleted = await self.todo_repo.delete(todo_id)
        if deleted:
            self._changed(["tasks"])
        return deleted

    # ── Sync hook ───────────────────────────────────────────────────

    def on_sync(self, outcome: SyncOutcome) -> None:
        if outcome.full:
            self._journal_cache.clear()
            return
        if "tasks" in outcome.categories:
            # Task completions can land on a different day than their spawn.
            self._journal_cache.clear()
            return
        for date in outcome.dates:
            self._journal_cache.pop(date, None)
