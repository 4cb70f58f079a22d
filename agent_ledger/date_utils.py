"""Shared timestamp normalization and date formatting helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# Epoch values above this are treated as milliseconds.
_EPOCH_MS_THRESHOLD = 100_000_000_000


def _as_utc(value: datetime) -> datetime:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an ISO string or epoch number (seconds or ms) into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        seconds = value / 1000.0 if value > _EPOCH_MS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        parsed = _parse_datetime_token(value)
        return _as_utc(parsed) if parsed else None
    return None


def format_iso(value: datetime | None) -> str:
    if value is None:
        return ""
    return _as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_to_epoch(value: str) -> float:
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed else 0.0


def date_key(value: datetime | None) -> str:
    """Calendar date (UTC) an instant belongs to."""
    if value is None:
        return ""
    return _as_utc(value).date().isoformat()


def parse_date(value: str) -> date | None:
    token = (value or "").strip()
    if not _DATE_ONLY_RE.match(token):
        return None
    try:
        return date.fromisoformat(token)
    except ValueError:
        return None


def today_key() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def format_day_label(date_str: str) -> str:
    """Render ``2026-10-18`` as ``18 Sunday Oct 2026``."""
    day = parse_date(date_str)
    if day is None:
        return date_str
    return f"{day.day} {day.strftime('%A')} {day.strftime('%b')} {day.year}"


def weekday_name(date_str: str) -> str:
    day = parse_date(date_str)
    return day.strftime("%A") if day else ""


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
