import unittest
from datetime import datetime, timezone

from agent_ledger.models import EventKind, EventPayload, SessionEvent, TaskStatus, ToolCallBlock
from agent_ledger.parsers.classifiers import (
    detect_completion,
    detect_spawns,
    detect_subagent_prompt,
    extract_usage,
    label_to_readable,
)

_TS = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


def _event(kind: EventKind, **payload) -> SessionEvent:
    return SessionEvent(sessionId="s1", sequence=0, timestamp=_TS, kind=kind, payload=EventPayload(**payload))


class SpawnDetectorTests(unittest.TestCase):
    def test_extracts_label_task_and_model(self) -> None:
        event = _event(
            EventKind.TOOL_CALL,
            model="fallback-model",
            toolCalls=[ToolCallBlock(id="c1", name="spawn", arguments={"label": "fix-bug", "task": "Fix the login bug", "model": "m1"})],
        )
        [spawn] = detect_spawns(event)
        self.assertEqual((spawn.label, spawn.task, spawn.model, spawn.tool_call_id), ("fix-bug", "Fix the login bug", "m1", "c1"))

    def test_missing_task_and_model_fall_back(self) -> None:
        event = _event(
            EventKind.TOOL_CALL,
            model="claude-x",
            toolCalls=[ToolCallBlock(name="sessions_spawn", arguments={"label": "dashboard-sidebar-v2"})],
        )
        [spawn] = detect_spawns(event)
        self.assertEqual(spawn.task, "Worked on dashboard sidebar")
        self.assertEqual(spawn.model, "claude-x")

    def test_missing_label_uses_unnamed_and_default_model(self) -> None:
        event = _event(EventKind.TOOL_CALL, toolCalls=[ToolCallBlock(name="spawn", arguments={})])
        [spawn] = detect_spawns(event)
        self.assertEqual(spawn.label, "unnamed")
        self.assertEqual(spawn.model, "default")

    def test_other_tools_and_kinds_do_not_match(self) -> None:
        event = _event(EventKind.TOOL_CALL, toolCalls=[ToolCallBlock(name="exec", arguments={"label": "x"})])
        self.assertEqual(detect_spawns(event), [])
        self.assertEqual(detect_spawns(_event(EventKind.ASSISTANT_MESSAGE, text="spawn")), [])

    def test_custom_tool_names(self) -> None:
        event = _event(EventKind.TOOL_CALL, toolCalls=[ToolCallBlock(name="delegate", arguments={"label": "x"})])
        self.assertEqual(len(detect_spawns(event, ["delegate"])), 1)


class CompletionDetectorTests(unittest.TestCase):
    def test_success(self) -> None:
        event = _event(EventKind.USER_MESSAGE, text='[System Message] A subagent task "fix-bug" just completed successfully.')
        match = detect_completion(event)
        self.assertEqual(match.label, "fix-bug")
        self.assertEqual(match.status, TaskStatus.DONE)

    def test_failure_with_curly_quotes(self) -> None:
        event = _event(EventKind.USER_MESSAGE, text="[System Message] The subagent task “deploy-site” failed: timeout")
        match = detect_completion(event)
        self.assertEqual(match.label, "deploy-site")
        self.assertEqual(match.status, TaskStatus.FAILED)

    def test_no_match_is_none(self) -> None:
        self.assertIsNone(detect_completion(_event(EventKind.USER_MESSAGE, text='subagent task "x" completed successfully')))
        self.assertIsNone(detect_completion(_event(EventKind.USER_MESSAGE, text='[System Message] subagent task "x" is running')))
        self.assertIsNone(
            detect_completion(_event(EventKind.ASSISTANT_MESSAGE, text='[System Message] subagent task "x" completed successfully'))
        )


class SubagentPromptTests(unittest.TestCase):
    def test_label_and_task_are_extracted(self) -> None:
        event = _event(
            EventKind.USER_MESSAGE,
            text="[Subagent Context] Label: sse-events\n[Subagent Task]: Add SSE streaming to the dashboard.",
        )
        prompt = detect_subagent_prompt(event)
        self.assertEqual(prompt.label, "sse-events")
        self.assertEqual(prompt.task, "Add SSE streaming to the dashboard.")

    def test_plain_message_is_none(self) -> None:
        self.assertIsNone(detect_subagent_prompt(_event(EventKind.USER_MESSAGE, text="hello")))


class UsageExtractorTests(unittest.TestCase):
    def test_counters_and_cost(self) -> None:
        event = _event(
            EventKind.ASSISTANT_MESSAGE,
            model="m1",
            provider="p1",
            usage={"input": 100, "output": 50, "cacheRead": 10, "cacheWrite": 5, "cost": {"total": 0.25}},
        )
        usage = extract_usage(event)
        self.assertEqual((usage.input, usage.output, usage.cache_read, usage.cache_write), (100, 50, 10, 5))
        self.assertEqual(usage.total_tokens, 165)
        self.assertAlmostEqual(usage.cost, 0.25)
        self.assertEqual((usage.model, usage.provider), ("m1", "p1"))

    def test_explicit_total_and_anthropic_keys(self) -> None:
        event = _event(
            EventKind.TOOL_CALL,
            usage={"input_tokens": 7, "output_tokens": 3, "totalTokens": 99, "cost": 0.5},
        )
        usage = extract_usage(event)
        self.assertEqual((usage.input, usage.output, usage.total_tokens), (7, 3, 99))
        self.assertEqual((usage.model, usage.provider), ("unknown", "unknown"))

    def test_absent_usage_is_none(self) -> None:
        self.assertIsNone(extract_usage(_event(EventKind.ASSISTANT_MESSAGE)))
        self.assertIsNone(extract_usage(_event(EventKind.USER_MESSAGE, usage={"input": 1})))


class LabelTests(unittest.TestCase):
    def test_label_to_readable(self) -> None:
        self.assertEqual(label_to_readable("dashboard-sidebar-v2"), "dashboard sidebar")
        self.assertEqual(label_to_readable("fix_bug"), "fix bug")


if __name__ == "__main__":
    unittest.main()
