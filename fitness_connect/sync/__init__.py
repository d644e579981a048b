"""Source → target sync: markers, retry policy and the orchestrator."""

from fitness_connect.sync.markers import FileMarkerStore, MarkerStore
from fitness_connect.sync.orchestrator import (
    SyncOrchestrator,
    SyncOutcome,
    SyncStatus,
    SyncStep,
)
from fitness_connect.sync.retry import retry_transient

__all__ = [
    "FileMarkerStore",
    "MarkerStore",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncStatus",
    "SyncStep",
    "retry_transient",
]
