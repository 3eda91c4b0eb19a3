"""Sync orchestration and local session state."""

from .engine import (
    LoadResult,
    ProgressCallback,
    PushResult,
    RowOutcome,
    SyncEngine,
)
from .session import EntityState, SessionState

__all__ = [
    "EntityState",
    "LoadResult",
    "ProgressCallback",
    "PushResult",
    "RowOutcome",
    "SessionState",
    "SyncEngine",
]
