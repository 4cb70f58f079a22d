"""Agent Ledger backend configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_list(name: str, default: tuple[str, ...], sep: str = ",") -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    items = tuple(part.strip() for part in value.split(sep) if part.strip())
    return items or default


# Project root (one level up from agent_ledger/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Transcript sources
_DEFAULT_SESSIONS_DIR = str(Path.home() / ".openclaw" / "agents" / "main" / "sessions")
SESSIONS_DIRS = [
    Path(p).expanduser()
    for p in _env_list("LEDGER_SESSIONS_DIRS", (_DEFAULT_SESSIONS_DIR,), sep=os.pathsep)
]
EXCLUDED_SOURCE_MARKERS = _env_list("LEDGER_EXCLUDED_SOURCE_MARKERS", (".deleted", ".reset"))

# Database
DB_PATH = Path(os.getenv("LEDGER_DB_PATH", str(PROJECT_ROOT / "data" / "agent_ledger.db")))

# Extraction
SPAWN_TOOL_NAMES = frozenset(_env_list("LEDGER_SPAWN_TOOL_NAMES", ("sessions_spawn", "spawn")))
TASK_DESCRIPTION_MAX = _env_int("LEDGER_TASK_DESCRIPTION_MAX", 200)

# Ledgers
ACTIVITY_RETENTION = _env_int("LEDGER_ACTIVITY_RETENTION", 2000)
ACTIVITY_DEFAULT_LIMIT = _env_int("LEDGER_ACTIVITY_DEFAULT_LIMIT", 100)
AGENT_ONLINE_MINUTES = _env_int("LEDGER_AGENT_ONLINE_MINUTES", 30)
JOURNAL_CACHE_SIZE = _env_int("LEDGER_JOURNAL_CACHE_SIZE", 31)

# Live push
DEBOUNCE_SECONDS = _env_int("LEDGER_DEBOUNCE_MS", 150) / 1000.0
HEARTBEAT_SECONDS = _env_float("LEDGER_HEARTBEAT_SECONDS", 30.0)
RECONNECT_MS = _env_int("LEDGER_RECONNECT_MS", 3000)
SUBSCRIBER_QUEUE_SIZE = _env_int("LEDGER_SUBSCRIBER_QUEUE_SIZE", 64)

# Startup sync tuning
STARTUP_SYNC_DELAY_SECONDS = _env_int("LEDGER_STARTUP_SYNC_DELAY_SECONDS", 0)

# Telemetry
OTEL_ENABLED = _env_bool("LEDGER_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("LEDGER_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("LEDGER_OTEL_SERVICE_NAME", "agent-ledger")
PROM_PORT = _env_int("LEDGER_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("LEDGER_HOST", "0.0.0.0")
PORT = _env_int("LEDGER_PORT", 8000)

# CORS
FRONTEND_ORIGIN = os.getenv("LEDGER_FRONTEND_ORIGIN", "http://localhost:3000")
