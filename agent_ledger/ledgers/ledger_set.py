"""The three transcript-derived ledgers, folded together per batch."""
from __future__ import annotations

import asyncio
from typing import Iterable

from agent_ledger import config
from agent_ledger.ledgers.activity import ActivityLog
from agent_ledger.ledgers.costs import CostLedger
from agent_ledger.ledgers.tasks import TaskLedger
from agent_ledger.models import SessionEvent

CATEGORIES = ("tasks", "activity", "agents", "costs")


class LedgerSet:
    def __init__(
        self,
        spawn_tool_names: Iterable[str] = config.SPAWN_TOOL_NAMES,
        activity_retention: int = config.ACTIVITY_RETENTION,
    ):
        self.tasks = TaskLedger(spawn_tool_names)
        self.costs = CostLedger()
        self.activity = ActivityLog(activity_retention)

    @property
    def all(self) -> tuple[TaskLedger, CostLedger, ActivityLog]:
        return (self.tasks, self.costs, self.activity)

    async def apply(self, events: list[SessionEvent]) -> set[str]:
        """Fold one source's ordered events into every ledger; return changed categories."""
        if not events:
            return set()
        tasks_changed, costs_changed, activity_changed = await asyncio.gather(
            self.tasks.apply(events),
            self.costs.apply(events),
            self.activity.apply(events),
        )
        changed: set[str] = set()
        if tasks_changed:
            changed.add("tasks")
        if costs_changed:
            changed.add("costs")
        if activity_changed:
            changed.add("activity")
        if self.activity.take_presence_changed():
            changed.add("agents")
        return changed

    def clear(self) -> None:
        for ledger in self.all:
            ledger.clear()
