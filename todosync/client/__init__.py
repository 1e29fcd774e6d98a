"""Client side of todosync.

Provides the sync state machine that drives pushes, background polls and
conflict resolution, plus its HTTP transport and durable local cache.
"""

from .local_cache import CachedDocument, LocalCache
from .state_machine import (
    ClientState,
    PendingConflict,
    SyncStateMachine,
    SyncStatus,
    now_ms,
)
from .transport import SyncTransport

__all__ = [
    "CachedDocument",
    "ClientState",
    "LocalCache",
    "PendingConflict",
    "SyncStateMachine",
    "SyncStatus",
    "SyncTransport",
    "now_ms",
]
