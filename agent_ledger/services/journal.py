"""Daily journal synthesis from a day's transcript events and tasks."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Optional

from agent_ledger.date_utils import format_day_label
from agent_ledger.ledgers.tasks import TaskLedger
from agent_ledger.models import AgentTask, EventKind, JournalEntry, JournalStats, SessionEvent, TaskStatus
from agent_ledger.parsers.classifiers import detect_subagent_prompt, extract_usage, label_to_readable
from agent_ledger.parsers.error_classifier import CATEGORY_ORDER, classify_error, struggle_text
from agent_ledger.services.narrative import clean_task_summary, extract_tags, generate_narrative

logger = logging.getLogger("ledger.journal")

MAX_PROBLEMS = 10
STRUGGLE_THRESHOLD = 3


class _OrderedSet:
    """Exact-text dedupe; first occurrence wins."""

    def __init__(self):
        self.items: list[str] = []
        self._seen: set[str] = set()

    def add(self, text: str) -> None:
        if text and text not in self._seen:
            self._seen.add(text)
            self.items.append(text)


def empty_journal(date: str) -> JournalEntry:
    return JournalEntry(date=date, dayLabel=format_day_label(date))


def tasks_from_events(events: Iterable[SessionEvent]) -> list[AgentTask]:
    ledger = TaskLedger()
    ledger.fold(sorted(events, key=lambda e: (e.sessionId, e.generation, e.sequence)))
    return ledger.list_tasks()


def synthesize(
    date: str,
    events: Iterable[SessionEvent],
    tasks: Optional[list[AgentTask]] = None,
) -> JournalEntry:
    """Build the journal entry for ``date``.

    Pure: the same events and tasks always produce the same entry. ``tasks``
    defaults to the tasks folded from ``events``. Events without a timestamp
    are ignored.
    """
    timed = sorted(
        (e for e in events if e.timestamp is not None),
        key=lambda e: (e.timestamp, e.sessionId, e.generation, e.sequence),
    )
    if tasks is None:
        tasks = tasks_from_events(timed)
    if not timed and not tasks:
        return empty_journal(date)

    tasks = sorted(tasks, key=lambda t: (t.spawnedAt or "", t.id))
    accomplishments = _OrderedSet()
    problems = _OrderedSet()
    error_counts: Counter[str] = Counter()
    tools_used: set[str] = set()
    text_parts: list[str] = []
    labels: list[str] = [t.label for t in tasks]
    prompt_spawns = 0
    total_tokens = 0
    total_cost = 0.0

    task_labels = set(labels)
    for event in timed:
        payload = event.payload
        if event.kind == EventKind.USER_MESSAGE:
            prompt = detect_subagent_prompt(event)
            if prompt is not None:
                if prompt.label:
                    labels.append(prompt.label)
                if not prompt.label or prompt.label not in task_labels:
                    prompt_spawns += 1
                if prompt.task:
                    accomplishments.add(clean_task_summary(prompt.task))
                elif prompt.label:
                    accomplishments.add(f"Worked on {label_to_readable(prompt.label)}")
            text_parts.append(payload.text[:500])
        elif event.kind in (EventKind.ASSISTANT_MESSAGE, EventKind.TOOL_CALL):
            usage = extract_usage(event)
            if usage is not None:
                total_tokens += usage.total_tokens
                total_cost += usage.cost
            tools_used.update(call.name for call in payload.toolCalls if call.name)
            if payload.text:
                text_parts.append(payload.text[:300])
        elif event.kind in (EventKind.TOOL_RESULT, EventKind.ERROR):
            match = classify_error(payload.text)
            if match is not None:
                error_counts[match.category] += 1
                problems.add(f"**Problem:** {match.summary}")

    for task in tasks:
        if task.status == TaskStatus.DONE:
            summary = clean_task_summary(task.description) if task.description else ""
            accomplishments.add(summary or f"Completed {label_to_readable(task.label)}")
        elif task.status == TaskStatus.FAILED:
            problems.add(f"**Failed:** {task.label}")

    struggles = [
        struggle_text(category, error_counts[category])
        for category in CATEGORY_ORDER
        if error_counts[category] >= STRUGGLE_THRESHOLD
    ]

    active_minutes = 0
    if len(timed) > 1:
        span = timed[-1].timestamp - timed[0].timestamp
        active_minutes = round(span.total_seconds() / 60)

    entry = JournalEntry(
        date=date,
        dayLabel=format_day_label(date),
        narrative=generate_narrative(tasks, date),
        tags=extract_tags(" ".join(text_parts), tools_used, labels),
        accomplishments=accomplishments.items,
        problems=problems.items[:MAX_PROBLEMS],
        struggles=struggles,
        stats=JournalStats(
            totalTokens=total_tokens,
            totalCost=round(total_cost, 4),
            subagentsSpawned=len(tasks) + prompt_spawns,
            activeTimeMinutes=active_minutes,
        ),
    )
    logger.debug(
        f"Synthesized journal for {date}: {len(entry.accomplishments)} accomplishments, "
        f"{len(entry.problems)} problems, {len(entry.struggles)} struggles"
    )
    return entry
