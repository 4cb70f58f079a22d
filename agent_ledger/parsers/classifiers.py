"""Pattern detectors for spawn, completion, subagent prompt and usage events.

Every detector is a pure function: ``None`` means "no match" and is a normal
outcome, never an error.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from agent_ledger import config
from agent_ledger.models import EventKind, SessionEvent, TaskStatus, ToolCallBlock

_COMPLETION_LABEL_PATTERN = re.compile(r'subagent task\s+["“]([^"”]+)["”]', re.IGNORECASE)
_SUBAGENT_LABEL_PATTERN = re.compile(r"Label:\s*(\S+)")
_SUBAGENT_TASK_PATTERN = re.compile(r"\[Subagent Task\]:\s*([^\n]+)")
_VERSION_SUFFIX_PATTERN = re.compile(r"\bv\d+$", re.IGNORECASE)


@dataclass(frozen=True)
class SpawnMatch:
    label: str
    task: str
    model: str
    tool_call_id: str = ""


@dataclass(frozen=True)
class CompletionMatch:
    label: str
    status: TaskStatus


@dataclass(frozen=True)
class SubagentPrompt:
    label: str | None
    task: str | None


@dataclass(frozen=True)
class UsageMatch:
    input: int
    output: int
    cache_read: int
    cache_write: int
    total_tokens: int
    cost: float
    model: str
    provider: str


def label_to_readable(label: str) -> str:
    """Turn ``dashboard-sidebar-v2`` into ``dashboard sidebar``."""
    text = re.sub(r"[-_]", " ", label or "")
    return _VERSION_SUFFIX_PATTERN.sub("", text).strip()


def _arg_text(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def detect_spawn(
    call: ToolCallBlock,
    event: SessionEvent | None = None,
    tool_names: Iterable[str] = config.SPAWN_TOOL_NAMES,
) -> SpawnMatch | None:
    if call.name not in set(tool_names):
        return None
    args = call.arguments
    label = _arg_text(args, "label") or "unnamed"
    task = _arg_text(args, "task") or f"Worked on {label_to_readable(label) or label}"
    model = _arg_text(args, "model") or (event.payload.model if event else "") or "default"
    return SpawnMatch(label=label, task=task, model=model, tool_call_id=call.id)


def detect_spawns(event: SessionEvent, tool_names: Iterable[str] = config.SPAWN_TOOL_NAMES) -> list[SpawnMatch]:
    if event.kind != EventKind.TOOL_CALL:
        return []
    names = set(tool_names)
    matches = []
    for call in event.payload.toolCalls:
        match = detect_spawn(call, event, names)
        if match is not None:
            matches.append(match)
    return matches


def detect_completion(event: SessionEvent) -> CompletionMatch | None:
    """Recognize the runtime's system notice that a subagent finished."""
    if event.kind != EventKind.USER_MESSAGE:
        return None
    text = event.payload.text
    if "[System Message]" not in text or "subagent task" not in text.lower():
        return None
    match = _COMPLETION_LABEL_PATTERN.search(text)
    if not match:
        return None
    lower = text.lower()
    if "completed successfully" in lower:
        status = TaskStatus.DONE
    elif "failed" in lower:
        status = TaskStatus.FAILED
    else:
        return None
    return CompletionMatch(label=match.group(1).strip(), status=status)


def detect_subagent_prompt(event: SessionEvent) -> SubagentPrompt | None:
    """Recognize the prompt a subagent session receives from its parent."""
    if event.kind != EventKind.USER_MESSAGE:
        return None
    text = event.payload.text
    if "[Subagent Task]" not in text and "[Subagent Context]" not in text:
        return None
    label_match = _SUBAGENT_LABEL_PATTERN.search(text)
    task_match = _SUBAGENT_TASK_PATTERN.search(text)
    return SubagentPrompt(
        label=label_match.group(1) if label_match else None,
        task=task_match.group(1).strip() if task_match else None,
    )


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _cost(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("total")
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


def extract_usage(event: SessionEvent) -> UsageMatch | None:
    if event.kind not in (EventKind.ASSISTANT_MESSAGE, EventKind.TOOL_CALL):
        return None
    usage = event.payload.usage
    if not usage:
        return None

    input_tokens = _int(usage.get("input", usage.get("input_tokens")))
    output_tokens = _int(usage.get("output", usage.get("output_tokens")))
    cache_read = _int(usage.get("cacheRead", usage.get("cache_read_input_tokens")))
    cache_write = _int(usage.get("cacheWrite", usage.get("cache_creation_input_tokens")))
    total = _int(usage.get("totalTokens")) or (input_tokens + output_tokens + cache_read + cache_write)

    return UsageMatch(
        input=input_tokens,
        output=output_tokens,
        cache_read=cache_read,
        cache_write=cache_write,
        total_tokens=total,
        cost=_cost(usage.get("cost")),
        model=event.payload.model or "unknown",
        provider=event.payload.provider or "unknown",
    )
