"""Parse raw transcript lines into typed SessionEvent models."""
from __future__ import annotations

import json
from typing import Any

from agent_ledger.date_utils import parse_timestamp
from agent_ledger.errors import ParseError
from agent_ledger.models import EventKind, EventPayload, SessionEvent, ToolCallBlock


def extract_text(content: Any) -> str:
    """Return a bare string, or the first ``text`` block of a content list."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                return text if isinstance(text, str) else ""
    return ""


def _decode_arguments(raw: Any) -> tuple[dict[str, Any], str]:
    if isinstance(raw, dict):
        return raw, ""
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return {}, raw
        if isinstance(decoded, dict):
            return decoded, ""
        return {}, raw
    return {}, ""


def _tool_calls(content: Any) -> list[ToolCallBlock]:
    if not isinstance(content, list):
        return []
    calls: list[ToolCallBlock] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "toolCall":
            continue
        arguments, raw_arguments = _decode_arguments(block.get("arguments"))
        calls.append(
            ToolCallBlock(
                id=str(block.get("id") or ""),
                name=str(block.get("name") or ""),
                arguments=arguments,
                rawArguments=raw_arguments,
            )
        )
    return calls


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _error_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, dict) and isinstance(value.get("message"), str):
        return value["message"]
    return json.dumps(value, sort_keys=True)


def _message_event(entry: dict[str, Any]) -> tuple[EventKind, EventPayload] | None:
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    role = message.get("role")
    content = message.get("content")
    usage = message.get("usage") if isinstance(message.get("usage"), dict) else None
    common = {
        "entryId": _string(entry.get("id")),
        "role": _string(role),
        "text": extract_text(content),
        "model": _string(message.get("model")),
        "provider": _string(message.get("provider")),
    }

    if role == "user":
        return EventKind.USER_MESSAGE, EventPayload(**common)
    if role == "assistant":
        calls = _tool_calls(content)
        kind = EventKind.TOOL_CALL if calls else EventKind.ASSISTANT_MESSAGE
        return kind, EventPayload(**common, toolCalls=calls, usage=usage)
    if role == "toolResult":
        return EventKind.TOOL_RESULT, EventPayload(
            **common,
            toolName=_string(message.get("toolName")),
            isError=bool(message.get("isError")),
        )
    return None


def parse_entry(entry: dict[str, Any]) -> tuple[EventKind, EventPayload] | None:
    entry_type = entry.get("type")
    if entry_type == "message":
        return _message_event(entry)
    if entry_type == "session":
        return EventKind.SESSION_START, EventPayload(entryId=_string(entry.get("id")))
    if entry_type == "model_change":
        return EventKind.MODEL_CHANGE, EventPayload(
            entryId=_string(entry.get("id")),
            model=_string(entry.get("modelId")),
            provider=_string(entry.get("provider")),
        )
    if entry_type == "error":
        return EventKind.ERROR, EventPayload(
            entryId=_string(entry.get("id")),
            text=_error_text(entry.get("error")),
            isError=True,
        )
    return None


def parse_line(
    raw: bytes | str,
    session_id: str,
    sequence: int,
    generation: int = 0,
) -> SessionEvent | None:
    """Parse one transcript line.

    Raises ``ParseError`` for undecodable or non-object lines. Returns ``None``
    for well-formed entries whose type carries nothing the ledgers use.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError("Invalid UTF-8 in transcript line", {"session": session_id, "sequence": sequence}) from exc
    try:
        entry = json.loads(raw)
    except ValueError as exc:
        raise ParseError("Transcript line is not valid JSON", {"session": session_id, "sequence": sequence}) from exc
    if not isinstance(entry, dict):
        raise ParseError("Transcript line is not a JSON object", {"session": session_id, "sequence": sequence})

    parsed = parse_entry(entry)
    if parsed is None:
        return None
    kind, payload = parsed

    timestamp = parse_timestamp(entry.get("timestamp"))
    if timestamp is None and isinstance(entry.get("message"), dict):
        timestamp = parse_timestamp(entry["message"].get("timestamp"))

    return SessionEvent(
        sessionId=session_id,
        sequence=sequence,
        generation=generation,
        timestamp=timestamp,
        kind=kind,
        payload=payload,
    )
