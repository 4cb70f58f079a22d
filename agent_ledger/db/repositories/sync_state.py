"""SQLite storage for sync checkpoints and ledger watermarks.

Batch writes here do not commit; the sync engine commits the whole batch.
"""
from __future__ import annotations

from typing import Iterable

import aiosqlite

from agent_ledger.models import SyncCheckpoint


def _checkpoint_from_row(row: aiosqlite.Row | dict) -> SyncCheckpoint:
    data = dict(row)
    return SyncCheckpoint(
        filePath=data["file_path"],
        sessionId=data.get("session_id") or "",
        lineCount=int(data.get("line_count") or 0),
        byteOffset=int(data.get("byte_offset") or 0),
        inode=int(data.get("inode") or 0),
        fileSize=int(data.get("file_size") or 0),
        generation=int(data.get("generation") or 0),
        lastSynced=data.get("last_synced") or "",
    )


class SqliteSyncStateRepository:
    """Track per-file read checkpoints for resumable ingestion."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get_checkpoint(self, file_path: str) -> SyncCheckpoint | None:
        async with self.db.execute(
            "SELECT * FROM sync_state WHERE file_path = ?", (file_path,)
        ) as cur:
            row = await cur.fetchone()
            return _checkpoint_from_row(row) if row else None

    async def upsert_checkpoint(self, checkpoint: SyncCheckpoint, parse_ms: int = 0) -> None:
        # The line count never moves backwards within a generation.
        await self.db.execute(
            """INSERT INTO sync_state (
                   file_path, session_id, line_count, byte_offset, inode,
                   file_size, generation, last_synced, parse_ms
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(file_path) DO UPDATE SET
                 session_id=excluded.session_id,
                 line_count=CASE
                     WHEN excluded.generation = sync_state.generation
                          AND excluded.line_count < sync_state.line_count
                     THEN sync_state.line_count ELSE excluded.line_count END,
                 byte_offset=CASE
                     WHEN excluded.generation = sync_state.generation
                          AND excluded.byte_offset < sync_state.byte_offset
                     THEN sync_state.byte_offset ELSE excluded.byte_offset END,
                 inode=excluded.inode, file_size=excluded.file_size,
                 generation=MAX(excluded.generation, sync_state.generation),
                 last_synced=excluded.last_synced, parse_ms=excluded.parse_ms""",
            (
                checkpoint.filePath, checkpoint.sessionId, checkpoint.lineCount,
                checkpoint.byteOffset, checkpoint.inode, checkpoint.fileSize,
                checkpoint.generation, checkpoint.lastSynced, parse_ms,
            ),
        )

    async def list_all(self) -> list[SyncCheckpoint]:
        async with self.db.execute("SELECT * FROM sync_state ORDER BY file_path") as cur:
            return [_checkpoint_from_row(r) for r in await cur.fetchall()]

    async def clear(self) -> None:
        await self.db.execute("DELETE FROM sync_state")


class SqliteWatermarkRepository:
    """Last applied (generation, sequence) per ledger and session."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_many(self, rows: Iterable[tuple[str, str, int, int]]) -> None:
        await self.db.executemany(
            """INSERT INTO ledger_watermarks (ledger, session_id, generation, sequence)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(ledger, session_id) DO UPDATE SET
                 generation=excluded.generation, sequence=excluded.sequence""",
            list(rows),
        )

    async def list_for(self, ledger: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM ledger_watermarks WHERE ledger = ?", (ledger,)
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def clear(self) -> None:
        await self.db.execute("DELETE FROM ledger_watermarks")
