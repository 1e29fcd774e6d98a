"""Server side of todosync.

Provides the last-write-wins sync service, the read-only history service
and the FastAPI application that exposes both.
"""

from .app import create_app
from .history_service import HistoryService
from .sync_service import EqualTimestampPolicy, SyncService

__all__ = ["create_app", "EqualTimestampPolicy", "HistoryService", "SyncService"]
