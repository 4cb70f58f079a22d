"""Pydantic models for transcript events, ledgers and the dashboard payloads."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Transcript events ───────────────────────────────────────────────

class EventKind(str, Enum):
    USER_MESSAGE = "UserMessage"
    ASSISTANT_MESSAGE = "AssistantMessage"
    TOOL_CALL = "ToolCall"
    TOOL_RESULT = "ToolResult"
    MODEL_CHANGE = "ModelChange"
    SESSION_START = "SessionStart"
    ERROR = "Error"


class ToolCallBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""
    arguments: dict[str, Any] = Field(default_factory=dict)
    rawArguments: str = ""  # arguments that were neither an object nor a JSON object string


class EventPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    entryId: str = ""
    role: str = ""  # "user" | "assistant" | "toolResult" | ""
    text: str = ""
    toolCalls: list[ToolCallBlock] = Field(default_factory=list)
    toolName: str = ""
    isError: bool = False
    model: str = ""
    provider: str = ""
    usage: Optional[dict[str, Any]] = None


class SessionEvent(BaseModel):
    """One parsed transcript line. Immutable."""

    model_config = ConfigDict(frozen=True)

    sessionId: str
    sequence: int
    generation: int = 0
    timestamp: Optional[datetime] = None
    kind: EventKind
    payload: EventPayload = Field(default_factory=EventPayload)

    @property
    def position(self) -> tuple[int, int]:
        return (self.generation, self.sequence)


# ── Task ledger ─────────────────────────────────────────────────────

class TaskStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class AgentTask(BaseModel):
    id: str
    label: str
    description: str = ""
    model: str = "default"
    status: TaskStatus = TaskStatus.IN_PROGRESS
    spawnedAt: Optional[str] = None
    completedAt: Optional[str] = None
    duration: Optional[str] = None
    durationSeconds: Optional[int] = None
    sessionId: str = ""
    spawnGeneration: int = Field(default=0, exclude=True)
    spawnSequence: int = Field(default=-1, exclude=True)
    completionSequence: Optional[int] = Field(default=None, exclude=True)


class TodoItem(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    createdAt: str = ""


class TaskBoard(BaseModel):
    todo: list[TodoItem] = Field(default_factory=list)
    inProgress: list[AgentTask] = Field(default_factory=list)
    done: list[AgentTask] = Field(default_factory=list)


# ── Cost ledger ─────────────────────────────────────────────────────

class CostRecord(BaseModel):
    agent: str = "main"
    provider: str = "unknown"
    model: str = "unknown"
    totalInput: int = 0
    totalOutput: int = 0
    cacheRead: int = 0
    cacheWrite: int = 0
    totalCost: float = 0.0
    messages: int = 0
    sessions: int = 0


class SessionCost(BaseModel):
    id: str
    shortId: str = ""
    model: str = ""
    cost: float = 0.0
    tokens: int = 0
    messages: int = 0
    timestamp: str = ""


class CostSummary(BaseModel):
    byModel: list[CostRecord] = Field(default_factory=list)
    bySession: list[SessionCost] = Field(default_factory=list)


# ── Activity ledger ─────────────────────────────────────────────────

class ActivityItem(BaseModel):
    id: str
    agent: str = "main"
    action: str = ""
    details: str = ""
    level: str = "info"  # "info" | "success" | "error"
    createdAt: str = ""
    session: Optional[str] = None


class AgentPresence(BaseModel):
    sessionId: str
    model: str = ""
    provider: str = ""
    lastActive: str = ""


class AgentInfo(BaseModel):
    id: str = "main"
    name: str = "Main Agent"
    model: str = "unknown"
    provider: str = "unknown"
    status: str = "offline"  # "online" | "offline"
    lastActive: str = ""
    session: str = ""
    totalSessions: int = 0


# ── Journal ─────────────────────────────────────────────────────────

class JournalStats(BaseModel):
    totalTokens: int = 0
    totalCost: float = 0.0
    subagentsSpawned: int = 0
    activeTimeMinutes: int = 0


class JournalEntry(BaseModel):
    date: str
    dayLabel: str = ""
    narrative: str = ""
    tags: list[str] = Field(default_factory=list)
    accomplishments: list[str] = Field(default_factory=list)
    problems: list[str] = Field(default_factory=list)
    struggles: list[str] = Field(default_factory=list)
    stats: JournalStats = Field(default_factory=JournalStats)

    def is_empty(self) -> bool:
        return not (self.accomplishments or self.problems or self.struggles or self.narrative)


# ── Sync state ──────────────────────────────────────────────────────

class SyncCheckpoint(BaseModel):
    filePath: str
    sessionId: str = ""
    lineCount: int = 0
    byteOffset: int = 0
    inode: int = 0
    fileSize: int = 0
    generation: int = 0
    lastSynced: str = ""
