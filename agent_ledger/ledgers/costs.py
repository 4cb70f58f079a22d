"""Cost ledger: token and spend totals per (provider, model) and per session."""
from __future__ import annotations

from typing import Iterable

from agent_ledger.date_utils import format_iso, iso_to_epoch
from agent_ledger.ledgers.base import KeyedLedger
from agent_ledger.models import CostRecord, CostSummary, EventKind, SessionCost, SessionEvent
from agent_ledger.parsers.classifiers import UsageMatch, extract_usage

ModelKey = tuple[str, str]


class CostLedger(KeyedLedger):
    name = "costs"

    def __init__(self):
        super().__init__()
        self.records: dict[ModelKey, CostRecord] = {}
        self.record_sessions: dict[ModelKey, set[str]] = {}
        self.sessions: dict[str, SessionCost] = {}

    def fold(self, events: list[SessionEvent]) -> bool:
        changed = False
        for event in events:
            if self.already_applied(event):
                continue
            if event.kind == EventKind.SESSION_START and event.timestamp is not None:
                row = self._session_row(event.sessionId)
                row.timestamp = format_iso(event.timestamp)
                self.mark_extra("sessions", event.sessionId)
                changed |= row.messages > 0
            usage = extract_usage(event)
            if usage is not None:
                self._apply_usage(event, usage)
                changed = True
            self.advance(event)
        return changed

    def _session_row(self, session_id: str) -> SessionCost:
        row = self.sessions.get(session_id)
        if row is None:
            row = SessionCost(id=session_id, shortId=session_id[:8])
            self.sessions[session_id] = row
        return row

    def _apply_usage(self, event: SessionEvent, usage: UsageMatch) -> None:
        key = (usage.provider, usage.model)
        record = self.records.get(key)
        if record is None:
            record = CostRecord(provider=usage.provider, model=usage.model)
            self.records[key] = record
        record.totalInput += usage.input
        record.totalOutput += usage.output
        record.cacheRead += usage.cache_read
        record.cacheWrite += usage.cache_write
        record.totalCost += usage.cost
        record.messages += 1

        contributors = self.record_sessions.setdefault(key, set())
        if event.sessionId not in contributors:
            contributors.add(event.sessionId)
            self.mark_extra("links", (key, event.sessionId))
        record.sessions = len(contributors)
        self.mark_upsert(key)

        row = self._session_row(event.sessionId)
        row.model = usage.model
        row.cost += usage.cost
        row.tokens += usage.total_tokens
        row.messages += 1
        self.mark_extra("sessions", event.sessionId)

    def clear(self) -> None:
        super().clear()
        self.records.clear()
        self.record_sessions.clear()
        self.sessions.clear()

    def load(
        self,
        records: Iterable[CostRecord],
        links: Iterable[tuple[str, str, str]],
        sessions: Iterable[SessionCost],
    ) -> None:
        for record in records:
            self.records[(record.provider, record.model)] = record
        for provider, model, session_id in links:
            self.record_sessions.setdefault((provider, model), set()).add(session_id)
        for row in sessions:
            self.sessions[row.id] = row

    def summary(self) -> CostSummary:
        by_model = sorted(
            (r.model_copy() for r in self.records.values()),
            key=lambda r: (-r.totalCost, r.provider, r.model),
        )
        by_session = sorted(
            (s.model_copy() for s in self.sessions.values() if s.messages > 0),
            key=lambda s: (iso_to_epoch(s.timestamp), s.id),
            reverse=True,
        )
        return CostSummary(byModel=by_model, bySession=by_session)
