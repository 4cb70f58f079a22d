"""SQLite storage for the activity log and agent presence."""
from __future__ import annotations

from typing import Iterable

import aiosqlite

from agent_ledger.models import ActivityItem, AgentPresence


class SqliteActivityRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_items(self, items: Iterable[ActivityItem]) -> None:
        await self.db.executemany(
            """INSERT INTO activity_items (id, agent, action, details, level, created_at, session)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 agent=excluded.agent, action=excluded.action, details=excluded.details,
                 level=excluded.level, created_at=excluded.created_at, session=excluded.session""",
            [(i.id, i.agent, i.action, i.details, i.level, i.createdAt, i.session) for i in items],
        )

    async def delete_items(self, item_ids: Iterable[str]) -> None:
        await self.db.executemany("DELETE FROM activity_items WHERE id = ?", [(i,) for i in item_ids])

    async def list_items(self, limit: int | None = None) -> list[ActivityItem]:
        query = "SELECT * FROM activity_items ORDER BY created_at DESC, id DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        async with self.db.execute(query, params) as cur:
            rows = await cur.fetchall()
        return [
            ActivityItem(
                id=r["id"],
                agent=r["agent"] or "main",
                action=r["action"] or "",
                details=r["details"] or "",
                level=r["level"] or "info",
                createdAt=r["created_at"],
                session=r["session"],
            )
            for r in rows
        ]

    async def upsert_presence(self, rows: Iterable[AgentPresence]) -> None:
        await self.db.executemany(
            """INSERT INTO agent_presence (session_id, model, provider, last_active)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(session_id) DO UPDATE SET
                 model=excluded.model, provider=excluded.provider,
                 last_active=excluded.last_active""",
            [(p.sessionId, p.model, p.provider, p.lastActive) for p in rows],
        )

    async def list_presence(self) -> list[AgentPresence]:
        async with self.db.execute("SELECT * FROM agent_presence") as cur:
            rows = await cur.fetchall()
        return [
            AgentPresence(
                sessionId=r["session_id"],
                model=r["model"] or "",
                provider=r["provider"] or "",
                lastActive=r["last_active"] or "",
            )
            for r in rows
        ]

    async def clear(self) -> None:
        await self.db.execute("DELETE FROM activity_items")
        await self.db.execute("DELETE FROM agent_presence")
