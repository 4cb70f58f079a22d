"""Incremental transcript → ledger sync engine.

Tails every transcript file from its checkpoint, parses new lines into
events, folds them into the ledgers and persists the changed ledger rows,
replay watermarks and the new checkpoint in one transaction.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Union

import aiosqlite

from agent_ledger.date_utils import date_key, format_iso
from agent_ledger.db.repositories import (
    SqliteActivityRepository,
    SqliteAgentTaskRepository,
    SqliteCostRepository,
    SqliteSyncStateRepository,
    SqliteWatermarkRepository,
)
from agent_ledger.errors import CheckpointWriteFailure, LedgerError, ParseError, SourceUnavailable
from agent_ledger.ledgers.ledger_set import CATEGORIES, LedgerSet
from agent_ledger.models import SessionEvent, SyncCheckpoint
from agent_ledger.observability import record_ingestion, record_parser_failure, record_token_cost, start_span
from agent_ledger.parsers.classifiers import extract_usage
from agent_ledger.parsers.events import parse_line
from agent_ledger.parsers.log_reader import LogReader, SourceHandle, is_source_file

logger = logging.getLogger("ledger.sync")


@dataclass
class SyncOutcome:
    """What a sync pass changed: push categories and affected journal dates."""

    categories: set[str] = field(default_factory=set)
    dates: set[str] = field(default_factory=set)
    sources: int = 0
    lines: int = 0
    events: int = 0
    parse_errors: int = 0
    failed: int = 0
    full: bool = False  # every derived view must be recomputed

    def merge(self, other: "SyncOutcome") -> None:
        self.categories |= other.categories
        self.dates |= other.dates
        self.sources += other.sources
        self.lines += other.lines
        self.events += other.events
        self.parse_errors += other.parse_errors
        self.failed += other.failed
        self.full = self.full or other.full

    def as_dict(self) -> dict[str, Any]:
        return {
            "sources": self.sources,
            "lines": self.lines,
            "events": self.events,
            "parseErrors": self.parse_errors,
            "failed": self.failed,
            "categories": sorted(self.categories),
            "dates": sorted(self.dates),
            "full": self.full,
        }


Listener = Callable[[SyncOutcome], Union[Awaitable[None], None]]


class SyncEngine:
    """Owns checkpoints and ledgers; one in-flight read/fold/flush per source."""

    def __init__(self, db: aiosqlite.Connection, reader: LogReader | None = None, ledgers: LedgerSet | None = None):
        self.db = db
        self.reader = reader or LogReader()
        self.ledgers = ledgers or LedgerSet()
        self.sync_repo = SqliteSyncStateRepository(db)
        self.watermark_repo = SqliteWatermarkRepository(db)
        self.task_repo = SqliteAgentTaskRepository(db)
        self.cost_repo = SqliteCostRepository(db)
        self.activity_repo = SqliteActivityRepository(db)
        self._checkpoints: dict[str, SyncCheckpoint] = {}
        self._source_locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, tuple[set[str], set[str]]] = {}
        self._write_lock = asyncio.Lock()
        self._listeners: list[Listener] = []
        self.last_outcome: SyncOutcome | None = None
        self.last_synced_at = ""

    # ── State ───────────────────────────────────────────────────────

    async def load_state(self) -> None:
        """Restore checkpoints, watermarks and ledger rows persisted by earlier runs."""
        for checkpoint in await self.sync_repo.list_all():
            self._checkpoints[checkpoint.filePath] = checkpoint

        ledgers = self.ledgers
        ledgers.tasks.load(await self.task_repo.list_all())
        ledgers.costs.load(
            await self.cost_repo.list_records(),
            await self.cost_repo.list_session_links(),
            await self.cost_repo.list_sessions(),
        )
        ledgers.activity.load(await self.activity_repo.list_items(), await self.activity_repo.list_presence())
        for ledger in ledgers.all:
            ledger.load_watermarks(await self.watermark_repo.list_for(ledger.name))
        logger.info(
            f"Loaded ledger state: {len(self._checkpoints)} checkpoints, "
            f"{len(ledgers.tasks.tasks)} tasks, {len(ledgers.costs.records)} cost records"
        )

    def checkpoint(self, file_path: str | Path) -> SyncCheckpoint | None:
        return self._checkpoints.get(str(file_path))

    def checkpoints(self) -> list[SyncCheckpoint]:
        return [c.model_copy() for c in sorted(self._checkpoints.values(), key=lambda c: c.filePath)]

    @property
    def write_lock(self) -> asyncio.Lock:
        """Serializes transactions on the shared connection."""
        return self._write_lock

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def _notify(self, outcome: SyncOutcome) -> None:
        self.last_outcome = outcome
        self.last_synced_at = format_iso(datetime.now(timezone.utc))
        if not outcome.categories and not outcome.dates and not outcome.full:
            return
        for listener in list(self._listeners):
            result = listener(outcome)
            if inspect.isawaitable(result):
                await result

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._source_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._source_locks[key] = lock
        return lock

    # ── Per-source cycle ────────────────────────────────────────────

    def _parse_batch(self, handle: SourceHandle, lines, start: int, generation: int) -> tuple[list[SessionEvent], int]:
        events: list[SessionEvent] = []
        errors = 0
        for sequence, raw in enumerate(lines, start=start):
            try:
                event = parse_line(raw, handle.session_id, sequence, generation)
            except ParseError as exc:
                errors += 1
                logger.debug(f"Skipping unreadable line {sequence} in {handle.path}: {exc}")
                record_parser_failure("transcript", source=handle.session_id)
                continue
            if event is not None:
                events.append(event)
        return events, errors

    async def sync_source(self, handle: SourceHandle) -> SyncOutcome:
        """Read, fold and durably checkpoint whatever is new in one source."""
        async with self._lock_for(handle.key):
            t0 = time.monotonic()
            previous = self._checkpoints.get(handle.key)
            batch = self.reader.read_new_lines(handle, previous)
            new_checkpoint = batch.checkpoint
            outcome = SyncOutcome(sources=1, lines=len(batch.lines))

            unchanged = (
                previous is not None
                and not batch.lines
                and new_checkpoint.byteOffset == previous.byteOffset
                and new_checkpoint.generation == previous.generation
            )
            if unchanged:
                return outcome

            with start_span("ledger.sync_source", {"source": handle.session_id, "lines": len(batch.lines)}):
                events, outcome.parse_errors = self._parse_batch(
                    handle, batch.lines, batch.start_sequence, new_checkpoint.generation
                )
                outcome.events = len(events)
                outcome.categories = await self.ledgers.apply(events)
                outcome.dates = {date_key(e.timestamp) for e in events if e.timestamp is not None}

                parse_ms = int((time.monotonic() - t0) * 1000)
                stamped = new_checkpoint.model_copy(update={"lastSynced": format_iso(datetime.now(timezone.utc))})
                try:
                    await self._flush(stamped, parse_ms)
                except CheckpointWriteFailure:
                    # Folded events are not replayed, so their changes are reported by the next flush.
                    categories, dates = self._pending.setdefault(handle.key, (set(), set()))
                    categories |= outcome.categories
                    dates |= outcome.dates
                    raise
                self._checkpoints[handle.key] = stamped
                pending = self._pending.pop(handle.key, None)
                if pending is not None:
                    outcome.categories |= pending[0]
                    outcome.dates |= pending[1]

            for event in events:
                usage = extract_usage(event)
                if usage is not None:
                    record_token_cost(
                        model=usage.model,
                        provider=usage.provider,
                        token_input=usage.input,
                        token_output=usage.output,
                        cost_usd=usage.cost,
                    )
            record_ingestion("transcript", "ok", parse_ms, source=handle.session_id)
            if batch.reset:
                logger.info(f"Re-read {handle.path} from line 0 (generation {new_checkpoint.generation})")
            return outcome

    async def _flush(self, checkpoint: SyncCheckpoint | None, parse_ms: int = 0) -> None:
        """Write dirty ledger rows, watermarks and the checkpoint in one transaction."""
        async with self._write_lock:
            ledgers = self.ledgers
            dirty = [(ledger, ledger.take_dirty()) for ledger in ledgers.all]
            tasks_dirty, costs_dirty, activity_dirty = (d for _, d in dirty)
            try:
                await self.task_repo.upsert_many(ledgers.tasks.rows_for(tasks_dirty.upserts))

                costs = ledgers.costs
                await self.cost_repo.upsert_records(costs.records[k] for k in costs_dirty.upserts if k in costs.records)
                await self.cost_repo.add_session_links(
                    (key[0], key[1], session_id) for key, session_id in costs_dirty.get("links")
                )
                await self.cost_repo.upsert_sessions(
                    costs.sessions[s] for s in costs_dirty.get("sessions") if s in costs.sessions
                )

                activity = ledgers.activity
                await self.activity_repo.upsert_items(
                    activity.items[i] for i in activity_dirty.upserts if i in activity.items
                )
                await self.activity_repo.delete_items(activity_dirty.deletes)
                await self.activity_repo.upsert_presence(
                    activity.presence[s] for s in activity_dirty.get("presence") if s in activity.presence
                )

                for ledger, ledger_dirty in dirty:
                    await self.watermark_repo.upsert_many(ledger.watermark_rows(ledger_dirty.watermarks))

                if checkpoint is not None:
                    await self.sync_repo.upsert_checkpoint(checkpoint, parse_ms)
                await self.db.commit()
            except aiosqlite.Error as exc:
                await self.db.rollback()
                for ledger, ledger_dirty in dirty:
                    ledger.restore_dirty(ledger_dirty)
                source = checkpoint.filePath if checkpoint else ""
                logger.error(f"Checkpoint write failed for {source or 'ledger flush'}: {exc}")
                record_ingestion("transcript", "checkpoint_failed", 0, source=source)
                raise CheckpointWriteFailure("Checkpoint write failed", {"source": source, "error": str(exc)}) from exc

    async def _sync_isolated(self, handle: SourceHandle) -> SyncOutcome:
        try:
            return await self.sync_source(handle)
        except SourceUnavailable as exc:
            logger.warning(f"Source unavailable, keeping its ledger data: {exc}")
        except CheckpointWriteFailure as exc:
            logger.error(f"Sync of {handle.path} will be retried: {exc}")
        except (LedgerError, OSError) as exc:
            logger.exception(f"Failed to sync {handle.path}: {exc}")
        return SyncOutcome(sources=1, failed=1)

    # ── Passes ──────────────────────────────────────────────────────

    async def sync_all(self) -> SyncOutcome:
        """Catch up every source. Sources are processed concurrently and in isolation."""
        outcome = await self._sync_pass(self.reader.list_sources())
        await self._notify(outcome)
        return outcome

    async def _sync_pass(self, handles: list[SourceHandle]) -> SyncOutcome:
        outcome = SyncOutcome()
        t0 = time.monotonic()
        with start_span("ledger.sync_all", {"sources": len(handles)}):
            results = await asyncio.gather(*(self._sync_isolated(h) for h in handles))
        for result in results:
            outcome.merge(result)
        logger.info(
            f"Sync complete: {outcome.sources} sources, {outcome.events} events, "
            f"{outcome.parse_errors} skipped lines, {outcome.failed} failed "
            f"({int((time.monotonic() - t0) * 1000)}ms)"
        )
        return outcome

    async def sync_changed_files(self, changed_files: list[tuple[str, Path]]) -> SyncOutcome:
        """Sync only specific changed files. Used by the file watcher.

        changed_files: list of (change_type, path) where change_type is 'modified'|'added'|'deleted'
        """
        outcome = SyncOutcome()
        seen: set[str] = set()
        for change_type, path in changed_files:
            if not is_source_file(Path(path)) or str(path) in seen:
                continue
            seen.add(str(path))
            if change_type == "deleted":
                logger.warning(f"Transcript removed, keeping its ledger data: {path}")
                continue
            outcome.merge(await self._sync_isolated(self.reader.handle_for(Path(path))))
        await self._notify(outcome)
        return outcome

    async def rebuild(self) -> SyncOutcome:
        """Drop checkpoints and derived ledgers (never todos) and re-read every source from line 0."""
        handles = self.reader.list_sources()
        keys = sorted(set(self._checkpoints) | {h.key for h in handles})
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self._lock_for(key))
            async with self._write_lock:
                try:
                    await self.sync_repo.clear()
                    await self.watermark_repo.clear()
                    await self.task_repo.clear()
                    await self.cost_repo.clear()
                    await self.activity_repo.clear()
                    await self.db.commit()
                except aiosqlite.Error as exc:
                    await self.db.rollback()
                    raise CheckpointWriteFailure("Rebuild could not clear ledger tables", {"error": str(exc)}) from exc
                self.ledgers.clear()
                self._checkpoints.clear()
                self._pending.clear()
        logger.info(f"Rebuilding ledgers from {len(handles)} sources")
        outcome = await self._sync_pass(self.reader.list_sources())
        outcome.categories |= set(CATEGORIES)
        outcome.full = True
        await self._notify(outcome)
        return outcome

    def status(self) -> dict[str, Any]:
        return {
            "sources": len(self._checkpoints),
            "lastSyncedAt": self.last_synced_at,
            "lastOutcome": self.last_outcome.as_dict() if self.last_outcome else None,
            "checkpoints": [c.model_dump() for c in self.checkpoints()],
        }
