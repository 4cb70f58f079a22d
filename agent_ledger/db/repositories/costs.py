"""SQLite storage for the cost ledger."""
from __future__ import annotations

from typing import Iterable

import aiosqlite

from agent_ledger.models import CostRecord, SessionCost


class SqliteCostRepository:
    """Per-model totals, contributing sessions and per-session spend."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_records(self, records: Iterable[CostRecord]) -> None:
        await self.db.executemany(
            """INSERT INTO cost_records (
                   provider, model, agent, total_input, total_output,
                   cache_read, cache_write, total_cost, messages, sessions
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(provider, model) DO UPDATE SET
                 agent=excluded.agent, total_input=excluded.total_input,
                 total_output=excluded.total_output, cache_read=excluded.cache_read,
                 cache_write=excluded.cache_write, total_cost=excluded.total_cost,
                 messages=excluded.messages, sessions=excluded.sessions""",
            [
                (
                    r.provider, r.model, r.agent, r.totalInput, r.totalOutput,
                    r.cacheRead, r.cacheWrite, r.totalCost, r.messages, r.sessions,
                )
                for r in records
            ],
        )

    async def add_session_links(self, links: Iterable[tuple[str, str, str]]) -> None:
        await self.db.executemany(
            "INSERT OR IGNORE INTO cost_record_sessions (provider, model, session_id) VALUES (?, ?, ?)",
            list(links),
        )

    async def upsert_sessions(self, rows: Iterable[SessionCost]) -> None:
        await self.db.executemany(
            """INSERT INTO session_costs (session_id, short_id, model, cost, tokens, messages, timestamp)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id) DO UPDATE SET
                 short_id=excluded.short_id, model=excluded.model, cost=excluded.cost,
                 tokens=excluded.tokens, messages=excluded.messages,
                 timestamp=excluded.timestamp""",
            [(s.id, s.shortId, s.model, s.cost, s.tokens, s.messages, s.timestamp) for s in rows],
        )

    async def list_records(self) -> list[CostRecord]:
        async with self.db.execute("SELECT * FROM cost_records ORDER BY total_cost DESC") as cur:
            rows = await cur.fetchall()
        return [
            CostRecord(
                agent=r["agent"] or "main",
                provider=r["provider"],
                model=r["model"],
                totalInput=r["total_input"] or 0,
                totalOutput=r["total_output"] or 0,
                cacheRead=r["cache_read"] or 0,
                cacheWrite=r["cache_write"] or 0,
                totalCost=r["total_cost"] or 0.0,
                messages=r["messages"] or 0,
                sessions=r["sessions"] or 0,
            )
            for r in rows
        ]

    async def list_session_links(self) -> list[tuple[str, str, str]]:
        async with self.db.execute("SELECT provider, model, session_id FROM cost_record_sessions") as cur:
            return [(r["provider"], r["model"], r["session_id"]) for r in await cur.fetchall()]

    async def list_sessions(self) -> list[SessionCost]:
        async with self.db.execute("SELECT * FROM session_costs") as cur:
            rows = await cur.fetchall()
        return [
            SessionCost(
                id=r["session_id"],
                shortId=r["short_id"] or "",
                model=r["model"] or "",
                cost=r["cost"] or 0.0,
                tokens=r["tokens"] or 0,
                messages=r["messages"] or 0,
                timestamp=r["timestamp"] or "",
            )
            for r in rows
        ]

    async def clear(self) -> None:
        await self.db.execute("DELETE FROM cost_records")
        await self.db.execute("DELETE FROM cost_record_sessions")
        await self.db.execute("DELETE FROM session_costs")
