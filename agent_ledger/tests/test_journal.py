import unittest
from datetime import datetime, timedelta, timezone

from agent_ledger.models import AgentTask, EventKind, EventPayload, SessionEvent, TaskStatus, ToolCallBlock
from agent_ledger.services.journal import synthesize
from agent_ledger.services.narrative import (
    MAX_TAGS,
    clean_task_summary,
    extract_tags,
    generate_narrative,
    theme_for,
)

DAY = "2026-10-18"
_T0 = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


def _event(seq: int, kind: EventKind, minutes: int = 0, **payload) -> SessionEvent:
    return SessionEvent(
        sessionId="s1",
        sequence=seq,
        timestamp=_T0 + timedelta(minutes=minutes),
        kind=kind,
        payload=EventPayload(**payload),
    )


def _tool_result(seq: int, text: str) -> SessionEvent:
    return _event(seq, EventKind.TOOL_RESULT, minutes=seq, role="toolResult", toolName="exec", text=text)


def _task(label: str, status: TaskStatus = TaskStatus.DONE, description: str = "", seconds: int | None = None) -> AgentTask:
    return AgentTask(
        id=f"T-{label}",
        label=label,
        description=description,
        status=status,
        spawnedAt="2026-10-18T09:00:00.000Z",
        durationSeconds=seconds,
    )


class StruggleThresholdTests(unittest.TestCase):
    def test_two_occurrences_are_not_a_struggle(self) -> None:
        entry = synthesize(DAY, [_tool_result(i, "HTTP 429 Too Many Requests") for i in range(2)])
        self.assertEqual(entry.struggles, [])
        self.assertEqual(entry.problems, ["**Problem:** Hit API rate limit (429), resolved after retry"])

    def test_three_occurrences_are_a_struggle(self) -> None:
        entry = synthesize(DAY, [_tool_result(i, "HTTP 429 Too Many Requests") for i in range(3)])
        self.assertEqual(entry.struggles, ["Hit rate limits 3 times and needed multiple retries"])

    def test_code_results_are_not_counted(self) -> None:
        events = [_tool_result(i, "import React from 'react'\nconst x = 'Error: 429'") for i in range(5)]
        entry = synthesize(DAY, events)
        self.assertEqual(entry.struggles, [])
        self.assertEqual(entry.problems, [])


class EmptyJournalTests(unittest.TestCase):
    def test_no_events_yields_explicitly_empty_entry(self) -> None:
        entry = synthesize(DAY, [])
        self.assertEqual(entry.date, DAY)
        self.assertEqual(entry.dayLabel, "18 Sunday Oct 2026")
        self.assertEqual(entry.narrative, "")
        self.assertEqual(entry.tags, [])
        self.assertEqual(entry.accomplishments, [])
        self.assertEqual(entry.problems, [])
        self.assertEqual(entry.struggles, [])
        self.assertEqual(entry.stats.totalTokens, 0)
        self.assertEqual(entry.stats.subagentsSpawned, 0)

    def test_untimed_events_are_ignored(self) -> None:
        event = SessionEvent(sessionId="s1", sequence=0, kind=EventKind.TOOL_RESULT, payload=EventPayload(text="Error: x"))
        self.assertTrue(synthesize(DAY, [event]).is_empty())


class SynthesizeTests(unittest.TestCase):
    def test_accomplishments_problems_and_stats(self) -> None:
        events = [
            _event(
                0,
                EventKind.USER_MESSAGE,
                role="user",
                text="[Subagent Task]: Fix the login bug at ~/repo/app.\nLabel: fix-login",
            ),
            _event(
                1,
                EventKind.ASSISTANT_MESSAGE,
                minutes=10,
                role="assistant",
                text="Working on it",
                model="m1",
                usage={"input": 100, "output": 20, "cacheRead": 5, "cost": 0.1},
            ),
            _event(2, EventKind.TOOL_RESULT, minutes=20, text="Error: permission denied writing /etc/hosts"),
        ]
        tasks = [
            _task("sse-live", description="Add SSE streaming", seconds=65),
            _task("deploy-site", status=TaskStatus.FAILED),
        ]

        entry = synthesize(DAY, events, tasks)

        self.assertEqual(entry.accomplishments, ["Fixed the login bug", "Added SSE streaming"])
        self.assertEqual(entry.problems, ["**Problem:** Permission denied error", "**Failed:** deploy-site"])
        self.assertEqual(entry.stats.totalTokens, 125)
        self.assertAlmostEqual(entry.stats.totalCost, 0.1)
        self.assertEqual(entry.stats.subagentsSpawned, 3)
        self.assertEqual(entry.stats.activeTimeMinutes, 20)
        self.assertIn("Hit some issues with: deploy site.", entry.narrative)

    def test_same_inputs_same_output(self) -> None:
        events = [_tool_result(i, "Error: boom") for i in range(4)]
        tasks = [_task("sidebar-fix"), _task("sse-events")]
        first = synthesize(DAY, list(reversed(events)), tasks)
        second = synthesize(DAY, events, list(reversed(tasks)))
        self.assertEqual(first.model_dump(), second.model_dump())

    def test_tasks_default_to_those_folded_from_events(self) -> None:
        events = [
            _event(
                0,
                EventKind.TOOL_CALL,
                role="assistant",
                toolCalls=[ToolCallBlock(name="spawn", arguments={"label": "fix-bug", "task": "Fix the login bug", "model": "m1"})],
            ),
            _event(
                1,
                EventKind.USER_MESSAGE,
                minutes=3,
                role="user",
                text='[System Message] A subagent task "fix-bug" just completed successfully.',
            ),
        ]
        entry = synthesize(DAY, events)
        self.assertEqual(entry.accomplishments, ["Fixed the login bug"])
        self.assertEqual(entry.stats.subagentsSpawned, 1)
        self.assertTrue(entry.narrative.startswith("Quiet Sunday. Knocked out 1 task."))

    def test_problems_are_capped(self) -> None:
        events = [_tool_result(i, f"Error: distinct failure {i}") for i in range(15)]
        self.assertEqual(len(synthesize(DAY, events).problems), 10)


class NarrativeTests(unittest.TestCase):
    def test_no_completed_tasks_means_empty_narrative(self) -> None:
        self.assertEqual(generate_narrative([], DAY), "")
        self.assertEqual(generate_narrative([_task("x", status=TaskStatus.IN_PROGRESS)], DAY), "")

    def test_themes_and_failed_tasks(self) -> None:
        tasks = [
            _task("sse-live-updates", description="Add SSE streaming to the dashboard. Then test it.", seconds=125),
            _task("sidebar-fix"),
            _task("deploy-site", status=TaskStatus.FAILED),
        ]
        self.assertEqual(
            generate_narrative(tasks, DAY),
            "Quiet Sunday. Knocked out 2 tasks.\n\n"
            "Wired up real-time features: add sse streaming to the dashboard (2m 5s).\n\n"
            "Spent time polishing the UI: sidebar fix.\n\n"
            "Hit some issues with: deploy site. Will need another pass.",
        )

    def test_multi_task_theme_caps_list(self) -> None:
        tasks = [_task(f"dashboard-{name}") for name in ("alpha", "beta", "gamma", "delta", "omega")]
        self.assertEqual(
            generate_narrative(tasks, DAY),
            "Productive Sunday. Ran 5 tasks.\n\n"
            "Started the day by building out the agent dashboard: "
            "dashboard alpha, dashboard beta, dashboard gamma, and 2 more.",
        )

    def test_big_day_opening(self) -> None:
        tasks = [_task(f"job-{i}", seconds=60) for i in range(10)]
        self.assertTrue(
            generate_narrative(tasks, DAY).startswith(
                "Big Sunday. Spawned 10 subagents and got a lot done, about 10m of compute time total."
            )
        )

    def test_theme_for(self) -> None:
        self.assertEqual(theme_for("journal-sidebar"), "journal")
        self.assertEqual(theme_for("fix-scroll"), "ui-polish")
        self.assertEqual(theme_for("misc"), "other")


class TagAndSummaryTests(unittest.TestCase):
    def test_extract_tags(self) -> None:
        tags = extract_tags(
            "Added SSE to the dashboard, fixed a git commit",
            {"web_fetch", "exec"},
            ["sidebar-scroll-v2"],
        )
        self.assertEqual(tags, ["browser", "dashboard", "git", "scroll", "sidebar", "sse"])

    def test_tags_are_capped(self) -> None:
        labels = [f"label{i:02d}-word{i:02d}" for i in range(20)]
        self.assertEqual(len(extract_tags("", [], labels)), MAX_TAGS)

    def test_clean_task_summary(self) -> None:
        self.assertEqual(clean_task_summary("[Subagent Task]: Build the cost view. Use charts."), "Built the cost view")
        self.assertEqual(clean_task_summary("Refactor the api"), "Refactored the api")
        self.assertTrue(clean_task_summary("Fix " + "x" * 200).endswith("…"))


if __name__ == "__main__":
    unittest.main()
