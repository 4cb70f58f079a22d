"""Task ledger: subagent spawn and completion lifecycle."""
from __future__ import annotations

import hashlib
from typing import Iterable, Optional

from agent_ledger import config
from agent_ledger.date_utils import date_key, format_duration, format_iso, parse_timestamp
from agent_ledger.ledgers.base import KeyedLedger
from agent_ledger.models import AgentTask, SessionEvent, TaskStatus
from agent_ledger.parsers.classifiers import CompletionMatch, SpawnMatch, detect_completion, detect_spawns


def task_id(session_id: str, label: str) -> str:
    digest = hashlib.sha1(f"{session_id}::{label}".encode("utf-8")).hexdigest()[:20]
    return f"T-{digest}"


def truncate_description(text: str, limit: int = config.TASK_DESCRIPTION_MAX) -> str:
    if len(text) > limit:
        return text[:limit] + "…"
    return text


class TaskLedger(KeyedLedger):
    name = "tasks"

    def __init__(self, spawn_tool_names: Iterable[str] = config.SPAWN_TOOL_NAMES):
        super().__init__()
        self.spawn_tool_names = frozenset(spawn_tool_names)
        self.tasks: dict[str, AgentTask] = {}

    def fold(self, events: list[SessionEvent]) -> bool:
        changed = False
        for event in events:
            if self.already_applied(event):
                continue
            for spawn in detect_spawns(event, self.spawn_tool_names):
                changed |= self._apply_spawn(event, spawn)
            completion = detect_completion(event)
            if completion is not None:
                changed |= self._apply_completion(event, completion)
            self.advance(event)
        return changed

    def _apply_spawn(self, event: SessionEvent, spawn: SpawnMatch) -> bool:
        tid = task_id(event.sessionId, spawn.label)
        existing = self.tasks.get(tid)
        if existing is not None:
            restarted = (
                existing.status != TaskStatus.IN_PROGRESS
                and event.position > (existing.spawnGeneration, existing.spawnSequence)
            )
            if not restarted:
                return False
        self.tasks[tid] = AgentTask(
            id=tid,
            label=spawn.label,
            description=truncate_description(spawn.task),
            model=spawn.model,
            status=TaskStatus.IN_PROGRESS,
            spawnedAt=format_iso(event.timestamp) or None,
            sessionId=event.sessionId,
            spawnGeneration=event.generation,
            spawnSequence=event.sequence,
        )
        self.mark_upsert(tid)
        return True

    def _apply_completion(self, event: SessionEvent, completion: CompletionMatch) -> bool:
        tid = task_id(event.sessionId, completion.label)
        task = self.tasks.get(tid)
        # No task materializes from a completion alone.
        if task is None or task.status != TaskStatus.IN_PROGRESS:
            return False
        if event.position <= (task.spawnGeneration, task.spawnSequence):
            return False

        task.status = completion.status
        task.completedAt = format_iso(event.timestamp) or None
        task.completionSequence = event.sequence
        started = parse_timestamp(task.spawnedAt)
        if started is not None and event.timestamp is not None:
            seconds = max(0, round((event.timestamp - started).total_seconds()))
            task.durationSeconds = seconds
            task.duration = format_duration(seconds)
        self.mark_upsert(tid)
        return True

    def clear(self) -> None:
        super().clear()
        self.tasks.clear()

    def load(self, tasks: Iterable[AgentTask]) -> None:
        for task in tasks:
            self.tasks[task.id] = task

    def rows_for(self, keys: Iterable[str]) -> list[AgentTask]:
        return [self.tasks[k] for k in keys if k in self.tasks]

    def list_tasks(self, date: Optional[str] = None) -> list[AgentTask]:
        """Tasks newest spawn first, optionally limited to one UTC spawn date."""
        tasks = list(self.tasks.values())
        if date:
            tasks = [t for t in tasks if date_key(parse_timestamp(t.spawnedAt)) == date]
        return sorted(tasks, key=lambda t: (t.spawnedAt or "", t.id), reverse=True)
