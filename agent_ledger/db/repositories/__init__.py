"""Repository package for database access."""

from .sync_state import SqliteSyncStateRepository, SqliteWatermarkRepository
from .tasks import SqliteAgentTaskRepository, SqliteTodoRepository
from .costs import SqliteCostRepository
from .activity import SqliteActivityRepository

__all__ = [
    "SqliteSyncStateRepository",
    "SqliteWatermarkRepository",
    "SqliteAgentTaskRepository",
    "SqliteTodoRepository",
    "SqliteCostRepository",
    "SqliteActivityRepository",
]
