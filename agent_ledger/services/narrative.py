"""Phrasing helpers for the daily journal: summaries, tags, themes and prose."""
from __future__ import annotations

import re
from typing import Iterable

from agent_ledger.date_utils import format_duration, weekday_name
from agent_ledger.models import AgentTask, TaskStatus
from agent_ledger.parsers.classifiers import label_to_readable

_SUBAGENT_PREFIX = re.compile(r"^\[Subagent Task\]:\s*", re.IGNORECASE)
_SENTENCE_END = re.compile(r"[.!]\s|$")
_HOME_PATH_CLAUSE = re.compile(r"\s+at\s+~/[\w\-/]+\.?\s*")
_BOLD = re.compile(r"\*\*[^*]+\*\*")
_PATHS = re.compile(r"(~/[\w\-/.]+|/home/[\w\-/.]+)")
_PREAMBLE = re.compile(r"^You are [^.]+\.\s*", re.IGNORECASE)
_FIRST_SENTENCE = re.compile(r"^[^.!?]+[.!?]")
_LABEL_SPLIT = re.compile(r"[-_]")
_LABEL_VERSION = re.compile(r"v\d+$", re.IGNORECASE)

PAST_TENSE = [
    ("Completely rebuild", "Completely rebuilt"),
    ("Add", "Added"),
    ("Refactor", "Refactored"),
    ("Replace", "Replaced"),
    ("Make", "Made"),
    ("Build", "Built"),
    ("Create", "Created"),
    ("Fix", "Fixed"),
    ("Update", "Updated"),
    ("Implement", "Implemented"),
    ("Remove", "Removed"),
    ("Connect", "Connected"),
    ("Rebuild", "Rebuilt"),
    ("Refine", "Refined"),
]

TAG_KEYWORDS: dict[str, tuple[str, ...]] = {
    "dashboard": ("dashboard", "agent-dashboard"),
    "sidebar": ("sidebar",),
    "navigation": ("navigation", "nav bar", "top tab"),
    "sse": ("sse", "server-sent", "eventsource", "real-time", "realtime"),
    "skills": ("skill", "skills"),
    "cron": ("cron", "schedule"),
    "journal": ("journal", "daily brief", "narrative"),
    "memory": ("memory",),
    "chat": ("chat", "quickchat"),
    "costs": ("cost", "token", "billing"),
    "tasks": ("task", "kanban"),
    "subagents": ("subagent", "spawn"),
    "api": ("api", "route", "endpoint"),
    "database": ("database", "sqlite", "sql"),
    "git": ("git", "commit", "push"),
    "browser": ("browser", "scrape"),
    "whatsapp": ("whatsapp",),
    "discord": ("discord",),
    "telegram": ("telegram",),
    "ui": ("redesign", "layout", "styling", "css", "tailwind"),
}

TOOL_TAGS: dict[str, str] = {
    "browser": "browser",
    "web_fetch": "browser",
    "web_search": "browser",
    "exec": "dev",
    "tts": "voice",
    "nodes": "nodes",
    "canvas": "canvas",
}

GENERIC_TAGS = frozenset({"the", "and", "for", "with", "from", "dev"})
MAX_TAGS = 12

# First matching rule wins.
THEME_RULES: list[tuple[str, tuple[str, ...]]] = [
    ("journal", ("journal",)),
    ("ui-polish", ("sidebar", "scroll", "animation")),
    ("real-time", ("sse", "live", "functional")),
    ("backend", ("supabase", "sync", "api")),
    ("skills", ("skill",)),
    ("cron", ("cron",)),
    ("chat", ("chat",)),
    ("bugfixes", ("bug", "fix")),
    ("dashboard", ("dashboard",)),
]

THEME_INTROS: dict[str, str] = {
    "dashboard": "Started the day by building out the agent dashboard",
    "ui-polish": "Spent time polishing the UI",
    "real-time": "Wired up real-time features",
    "backend": "Did backend work",
    "journal": "Iterated on the journal system",
    "skills": "Set up the skills viewer",
    "cron": "Added cron job management",
    "chat": "Worked on the chat interface",
    "bugfixes": "Fixed some bugs along the way",
    "other": "Also tackled some other tasks",
}

THEME_ORDER = [
    "dashboard", "real-time", "ui-polish", "skills", "cron",
    "chat", "journal", "backend", "bugfixes", "other",
]


def clean_task_summary(task_line: str) -> str:
    """Short past-tense summary of a task prompt."""
    text = _SUBAGENT_PREFIX.sub("", task_line or "").strip()

    end = _SENTENCE_END.search(text)
    if end and 0 < end.start() < len(text) - 1:
        text = text[: end.start() + 1]

    text = _HOME_PATH_CLAUSE.sub(" ", text)
    text = re.sub(r"\s{2,}", " ", text).strip()
    text = re.sub(r"\.\s*$", "", text)

    for imperative, past in PAST_TENSE:
        if text.startswith(imperative + " "):
            text = past + text[len(imperative):]
            break

    if len(text) > 120:
        text = text[:117] + "…"
    return text


def first_sentence(text: str) -> str:
    clean = _BOLD.sub("", text or "")
    clean = _PATHS.sub("", clean).strip()
    clean = _PREAMBLE.sub("", clean)
    match = _FIRST_SENTENCE.match(clean)
    if match and len(match.group(0)) > 10:
        return match.group(0).strip()
    return clean[:120].strip()


def extract_tags(all_text: str, tools_used: Iterable[str], labels: Iterable[str]) -> list[str]:
    tags: set[str] = set()
    lower = all_text.lower()
    for tag, keywords in TAG_KEYWORDS.items():
        if any(k in lower for k in keywords):
            tags.add(tag)

    for label in labels:
        words = _LABEL_VERSION.sub("", _LABEL_SPLIT.sub(" ", label)).split()
        tags.update(word.lower() for word in words if len(word) > 2)

    for tool in tools_used:
        if tool in TOOL_TAGS:
            tags.add(TOOL_TAGS[tool])

    tags -= GENERIC_TAGS
    return sorted(tags)[:MAX_TAGS]


def theme_for(label: str) -> str:
    lower = (label or "").lower()
    for theme, needles in THEME_RULES:
        if any(n in lower for n in needles):
            return theme
    return "other"


def group_by_theme(tasks: Iterable[AgentTask]) -> dict[str, list[AgentTask]]:
    groups: dict[str, list[AgentTask]] = {}
    for task in tasks:
        groups.setdefault(theme_for(task.label), []).append(task)
    return groups


def _duration_suffix(task: AgentTask) -> str:
    return f" ({format_duration(task.durationSeconds)})" if task.durationSeconds else ""


def generate_narrative(tasks: list[AgentTask], date: str) -> str:
    """Prose summary of a day's subagent work; empty when nothing completed."""
    done = [t for t in tasks if t.status == TaskStatus.DONE]
    if not done:
        return ""
    failed = [t for t in tasks if t.status == TaskStatus.FAILED]
    total_time = sum(t.durationSeconds or 0 for t in done)
    weekday = weekday_name(date)
    paragraphs: list[str] = []

    if len(done) >= 10:
        tail = f", about {format_duration(total_time)} of compute time total" if total_time else ""
        paragraphs.append(f"Big {weekday}. Spawned {len(done)} subagents and got a lot done{tail}.")
    elif len(done) >= 5:
        tail = f" across {format_duration(total_time)} of work" if total_time else ""
        paragraphs.append(f"Productive {weekday}. Ran {len(done)} tasks{tail}.")
    else:
        plural = "s" if len(done) > 1 else ""
        paragraphs.append(f"Quiet {weekday}. Knocked out {len(done)} task{plural}.")

    groups = group_by_theme(done)
    for theme in THEME_ORDER:
        group = groups.get(theme)
        if not group:
            continue
        intro = THEME_INTROS[theme]
        if len(group) == 1:
            task = group[0]
            desc = first_sentence(task.description) if task.description else label_to_readable(task.label)
            desc = desc.rstrip(".!?")
            paragraphs.append(f"{intro}: {desc.lower()}{_duration_suffix(task)}.")
        else:
            items = [f"{label_to_readable(t.label)}{_duration_suffix(t)}" for t in group]
            if len(items) <= 3:
                paragraphs.append(f"{intro}: {', '.join(items)}.")
            else:
                paragraphs.append(f"{intro}: {', '.join(items[:3])}, and {len(items) - 3} more.")

    if failed:
        names = ", ".join(label_to_readable(t.label) for t in failed)
        paragraphs.append(f"Hit some issues with: {names}. Will need another pass.")

    return "\n\n".join(paragraphs)
