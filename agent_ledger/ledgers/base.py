"""Shared bookkeeping for the keyed, lock-guarded ledgers."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable

from agent_ledger.models import SessionEvent


@dataclass
class DirtySet:
    """Keys changed since the last successful flush."""

    upserts: set = field(default_factory=set)
    deletes: set = field(default_factory=set)
    watermarks: set[str] = field(default_factory=set)
    extra: dict[str, set] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.upserts or self.deletes or self.watermarks or any(self.extra.values()))

    def get(self, kind: str) -> set:
        return self.extra.get(kind, set())

    def merge(self, newer: "DirtySet") -> None:
        self.upserts = (self.upserts - newer.deletes) | newer.upserts
        self.deletes = (self.deletes - newer.upserts) | newer.deletes
        self.watermarks |= newer.watermarks
        for kind, keys in newer.extra.items():
            self.extra.setdefault(kind, set()).update(keys)


class KeyedLedger:
    """Base for a single-writer ledger.

    Each ledger owns an ``asyncio.Lock`` and remembers, per session, the last
    ``(generation, sequence)`` it folded. Events at or before that watermark are
    skipped, which makes replaying an already-applied prefix a no-op.
    """

    name = "ledger"

    def __init__(self):
        self.lock = asyncio.Lock()
        self.watermarks: dict[str, tuple[int, int]] = {}
        self._dirty = DirtySet()

    def already_applied(self, event: SessionEvent) -> bool:
        mark = self.watermarks.get(event.sessionId)
        return mark is not None and event.position <= mark

    def advance(self, event: SessionEvent) -> None:
        mark = self.watermarks.get(event.sessionId)
        if mark is None or event.position > mark:
            self.watermarks[event.sessionId] = event.position
            self._dirty.watermarks.add(event.sessionId)

    def mark_upsert(self, key) -> None:
        self._dirty.upserts.add(key)
        self._dirty.deletes.discard(key)

    def mark_delete(self, key) -> None:
        self._dirty.deletes.add(key)
        self._dirty.upserts.discard(key)

    def mark_extra(self, kind: str, key) -> None:
        self._dirty.extra.setdefault(kind, set()).add(key)

    def take_dirty(self) -> DirtySet:
        dirty, self._dirty = self._dirty, DirtySet()
        return dirty

    def restore_dirty(self, dirty: DirtySet) -> None:
        dirty.merge(self._dirty)
        self._dirty = dirty

    def load_watermarks(self, rows: Iterable[dict]) -> None:
        for row in rows:
            self.watermarks[row["session_id"]] = (int(row["generation"]), int(row["sequence"]))

    def watermark_rows(self, session_ids: Iterable[str]) -> list[tuple[str, str, int, int]]:
        rows = []
        for session_id in session_ids:
            mark = self.watermarks.get(session_id)
            if mark is not None:
                rows.append((self.name, session_id, mark[0], mark[1]))
        return rows

    def clear(self) -> None:
        self.watermarks.clear()
        self._dirty = DirtySet()

    def fold(self, events: list[SessionEvent]) -> bool:
        """Apply events in order; return True when visible state changed."""
        raise NotImplementedError

    async def apply(self, events: list[SessionEvent]) -> bool:
        async with self.lock:
            return self.fold(events)
