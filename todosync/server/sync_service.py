"""Last-write-wins merge of client pushes against the authoritative copy."""

import logging
import threading
from enum import Enum

from ..errors import InvalidRequestError
from ..models import MAX_INTEGER, CurrentDocument, SyncResult
from ..store import DocumentStore

logger = logging.getLogger(__name__)


class EqualTimestampPolicy(Enum):
    """How to answer a push whose timestamp equals the stored one."""

    NOOP = "noop"  # Client already holds the current revision
    CONFLICT = "conflict"  # Force the client to reconcile


class SyncService:
    """Decides whose edit wins and archives the loser.

    Every call runs read, archive and overwrite as one unit per document id:
    a per-id lock serialises callers within this process and the store's
    ``BEGIN IMMEDIATE`` transaction covers other processes sharing the file.
    """

    def __init__(
        self,
        store: DocumentStore,
        document_id: str = "main",
        equal_policy: EqualTimestampPolicy = EqualTimestampPolicy.NOOP,
    ):
        """Initialize the sync service.

        Args:
            store: Authoritative document store.
            document_id: Logical id of the document being synchronized.
            equal_policy: Behaviour when client and server timestamps match.
        """
        self.store = store
        self.document_id = document_id
        self.equal_policy = equal_policy
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, doc_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(doc_id)
            if lock is None:
                lock = self._locks[doc_id] = threading.Lock()
            return lock

    def sync(self, content: str, client_timestamp: int) -> SyncResult:
        """Merge a client's copy into the authoritative store.

        Args:
            content: Full text of the client's copy (may be empty).
            client_timestamp: Client's ordering token for that copy.

        Returns:
            ``synced`` if the store now agrees with the client, or
            ``conflict`` carrying the newer server revision.

        Raises:
            InvalidRequestError: If the arguments are malformed.
            StoreUnavailableError: If storage fails; nothing was written.
        """
        if not isinstance(content, str):
            raise InvalidRequestError("content must be a string")
        if isinstance(client_timestamp, bool) or not isinstance(client_timestamp, int):
            raise InvalidRequestError("clientTimestamp must be an integer")
        if client_timestamp < 0:
            raise InvalidRequestError("clientTimestamp must not be negative")
        if client_timestamp > MAX_INTEGER:
            raise InvalidRequestError("clientTimestamp is out of range")

        doc_id = self.document_id
        with self._lock_for(doc_id), self.store.transaction():
            current = self.store.get_document(doc_id)

            # First write for this document
            if current is None:
                self.store.insert_document(
                    CurrentDocument(id=doc_id, content=content, updated_at=client_timestamp)
                )
                logger.info(f"Created {doc_id} at ts={client_timestamp}")
                return SyncResult.synced(client_timestamp)

            # Client is newer: archive the stored revision, then overwrite it
            if client_timestamp > current.updated_at:
                self.store.append_history(doc_id, current.content, current.updated_at)
                self.store.update_document(doc_id, content, client_timestamp)
                logger.info(
                    f"Accepted {doc_id} ts={client_timestamp}, "
                    f"archived ts={current.updated_at}"
                )
                return SyncResult.synced(client_timestamp)

            if (
                client_timestamp == current.updated_at
                and self.equal_policy == EqualTimestampPolicy.NOOP
            ):
                return SyncResult.synced(current.updated_at)

            # Server is newer: hand its revision back untouched
            logger.debug(
                f"Rejected stale push for {doc_id}: "
                f"client ts={client_timestamp}, server ts={current.updated_at}"
            )
            return SyncResult.conflict(current.content, current.updated_at)
