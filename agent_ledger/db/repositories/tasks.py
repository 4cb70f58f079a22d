"""SQLite storage for the task ledger and the UI todo bucket."""
from __future__ import annotations

from typing import Iterable

import aiosqlite

from agent_ledger.date_utils import format_duration
from agent_ledger.models import AgentTask, TaskStatus, TodoItem


def _task_from_row(row: aiosqlite.Row) -> AgentTask:
    data = dict(row)
    seconds = data.get("duration_seconds")
    return AgentTask(
        id=data["id"],
        label=data["label"],
        description=data.get("description") or "",
        model=data.get("model") or "default",
        status=TaskStatus(data.get("status") or "in_progress"),
        spawnedAt=data.get("spawned_at"),
        completedAt=data.get("completed_at"),
        durationSeconds=seconds,
        duration=format_duration(seconds) if seconds is not None else None,
        sessionId=data.get("session_id") or "",
        spawnGeneration=data.get("spawn_generation") or 0,
        spawnSequence=data.get("spawn_sequence") if data.get("spawn_sequence") is not None else -1,
        completionSequence=data.get("completion_sequence"),
    )


class SqliteAgentTaskRepository:
    """Derived subagent tasks. Writes join the caller's transaction."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_many(self, tasks: Iterable[AgentTask]) -> None:
        await self.db.executemany(
            """INSERT INTO agent_tasks (
                   id, label, description, model, status, spawned_at, completed_at,
                   duration_seconds, session_id, spawn_generation, spawn_sequence,
                   completion_sequence
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 label=excluded.label, description=excluded.description,
                 model=excluded.model, status=excluded.status,
                 spawned_at=excluded.spawned_at, completed_at=excluded.completed_at,
                 duration_seconds=excluded.duration_seconds,
                 session_id=excluded.session_id,
                 spawn_generation=excluded.spawn_generation,
                 spawn_sequence=excluded.spawn_sequence,
                 completion_sequence=excluded.completion_sequence""",
            [
                (
                    t.id, t.label, t.description, t.model, t.status.value,
                    t.spawnedAt, t.completedAt, t.durationSeconds, t.sessionId,
                    t.spawnGeneration, t.spawnSequence, t.completionSequence,
                )
                for t in tasks
            ],
        )

    async def list_all(self) -> list[AgentTask]:
        async with self.db.execute("SELECT * FROM agent_tasks ORDER BY spawned_at DESC") as cur:
            return [_task_from_row(r) for r in await cur.fetchall()]

    async def clear(self) -> None:
        await self.db.execute("DELETE FROM agent_tasks")


class SqliteTodoRepository:
    """User-created todo items. Never touched by transcript ingestion."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, todo: TodoItem) -> None:
        await self.db.execute(
            "INSERT INTO todos (id, title, description, created_at) VALUES (?, ?, ?, ?)",
            (todo.id, todo.title, todo.description, todo.createdAt),
        )
        await self.db.commit()

    async def delete(self, todo_id: str) -> bool:
        cur = await self.db.execute("DELETE FROM todos WHERE id = ?", (todo_id,))
        await self.db.commit()
        return cur.rowcount > 0

    async def list_all(self) -> list[TodoItem]:
        async with self.db.execute("SELECT * FROM todos ORDER BY created_at DESC, id") as cur:
            rows = await cur.fetchall()
        return [
            TodoItem(
                id=r["id"],
                title=r["title"] or "",
                description=r["description"] or "",
                createdAt=r["created_at"] or "",
            )
            for r in rows
        ]
