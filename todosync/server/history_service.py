"""Read-only access to archived revisions."""

import logging

from ..models import HistorySummary
from ..store import DocumentStore

logger = logging.getLogger(__name__)


class HistoryService:
    """Lists and fetches revisions archived by the sync service."""

    def __init__(self, store: DocumentStore, document_id: str = "main", max_limit: int = 50):
        """Initialize the history service.

        Args:
            store: Authoritative document store.
            document_id: Logical id of the document whose history is served.
            max_limit: Upper bound on entries returned by a listing.
        """
        self.store = store
        self.document_id = document_id
        self.max_limit = max_limit

    def list_recent(self, limit: int | None = None) -> list[HistorySummary]:
        """List archived revisions, newest first.

        Args:
            limit: Requested number of entries, clamped to 1..max_limit.
                Defaults to max_limit.

        Returns:
            Entry ids and timestamps, without content.
        """
        if limit is None:
            limit = self.max_limit
        limit = max(1, min(limit, self.max_limit))
        return self.store.list_history(self.document_id, limit=limit)

    def get_content(self, entry_id: int) -> str | None:
        """Fetch one archived revision's content.

        Returns:
            The content, or None if no entry of this document has that id.
        """
        entry = self.store.get_history_entry(entry_id)
        if entry is None or entry.parent_id != self.document_id:
            logger.debug(f"History entry #{entry_id} not found")
            return None
        return entry.content
