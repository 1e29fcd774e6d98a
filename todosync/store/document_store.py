"""SQLite storage for the current document and its revision archive.

The ``documents`` table holds exactly one row per logical document id. The
``history`` table is append-only: every time a document row is overwritten,
the content it held is first copied into ``history`` together with the
timestamp it carried while current.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import StoreUnavailableError
from ..models import CurrentDocument, HistoryEntry, HistorySummary

logger = logging.getLogger(__name__)

SCHEMA = """
-- Current revision: one row per logical document id
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);

-- Archive of superseded revisions, append-only
CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_id TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_parent ON history(parent_id, created_at);
"""


class DocumentStore:
    """Authoritative store for documents and their archived revisions.

    A single connection is shared between threads; every access holds
    ``_lock`` so a reader never sees a half-applied transaction.
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            timeout: Seconds to wait on a locked database file.
        """
        self.db_path = Path(db_path).expanduser()
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._guard("connect"):
            # Autocommit mode; multi-statement writes go through transaction()
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)

        logger.info(f"DocumentStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Hold the connection lock and translate sqlite errors."""
        with self._lock:
            try:
                yield
            except sqlite3.Error as e:
                logger.error(f"Store operation '{operation}' failed: {e}")
                raise StoreUnavailableError(f"{operation} failed") from e

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed statements as one atomic write.

        Takes the database write lock up front (``BEGIN IMMEDIATE``) so a
        read-then-write sequence cannot interleave with another writer, even
        one in a different process. Rolls back on any exception.
        """
        with self._lock:
            conn = self._ensure_connected()
            with self._guard("begin"):
                conn.execute("BEGIN IMMEDIATE")
            try:
                yield
                with self._guard("commit"):
                    conn.execute("COMMIT")
            except BaseException:
                # A failed COMMIT leaves the transaction open
                if conn.in_transaction:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error as e:
                        logger.error(f"Rollback failed: {e}")
                raise

    # ==================== Current document ====================

    def get_document(self, doc_id: str) -> CurrentDocument | None:
        """Fetch the current revision of a document.

        Args:
            doc_id: Logical document id.

        Returns:
            CurrentDocument, or None if the document was never written.
        """
        with self._guard("get_document"):
            row = self._ensure_connected().execute(
                "SELECT id, content, updated_at FROM documents WHERE id = ?",
                (doc_id,),
            ).fetchone()

        if row is None:
            return None
        return CurrentDocument(
            id=row["id"], content=row["content"], updated_at=row["updated_at"]
        )

    def insert_document(self, doc: CurrentDocument) -> None:
        """Create the current revision of a document."""
        with self._guard("insert_document"):
            self._ensure_connected().execute(
                "INSERT INTO documents (id, content, updated_at) VALUES (?, ?, ?)",
                (doc.id, doc.content, doc.updated_at),
            )
        logger.debug(f"Created document {doc.id} at ts={doc.updated_at}")

    def update_document(self, doc_id: str, content: str, updated_at: int) -> None:
        """Overwrite the current revision of a document in place."""
        with self._guard("update_document"):
            self._ensure_connected().execute(
                "UPDATE documents SET content = ?, updated_at = ? WHERE id = ?",
                (content, updated_at, doc_id),
            )
        logger.debug(f"Updated document {doc_id} to ts={updated_at}")

    # ==================== Archive ====================

    def append_history(self, parent_id: str, content: str, created_at: int) -> int:
        """Archive a superseded revision.

        Args:
            parent_id: Document the revision belonged to.
            content: Content that was current before the overwrite.
            created_at: Timestamp the content carried while current.

        Returns:
            Id assigned to the new history entry.
        """
        with self._guard("append_history"):
            cursor = self._ensure_connected().execute(
                "INSERT INTO history (parent_id, content, created_at) VALUES (?, ?, ?)",
                (parent_id, content, created_at),
            )
        logger.debug(f"Archived revision ts={created_at} of {parent_id} as #{cursor.lastrowid}")
        return cursor.lastrowid

    def list_history(self, parent_id: str, limit: int = 50) -> list[HistorySummary]:
        """List archived revisions of a document, newest first.

        Args:
            parent_id: Document id.
            limit: Maximum rows to return.

        Returns:
            HistorySummary rows ordered by created_at descending.
        """
        with self._guard("list_history"):
            rows = self._ensure_connected().execute(
                """
                SELECT id, created_at
                FROM history
                WHERE parent_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (parent_id, limit),
            ).fetchall()

        return [HistorySummary(id=row["id"], created_at=row["created_at"]) for row in rows]

    def get_history_entry(self, entry_id: int) -> HistoryEntry | None:
        """Fetch one archived revision by id."""
        with self._guard("get_history_entry"):
            row = self._ensure_connected().execute(
                "SELECT id, parent_id, content, created_at FROM history WHERE id = ?",
                (entry_id,),
            ).fetchone()

        if row is None:
            return None
        return HistoryEntry(
            id=row["id"],
            parent_id=row["parent_id"],
            content=row["content"],
            created_at=row["created_at"],
        )

    def count_history(self, parent_id: str) -> int:
        """Count archived revisions of a document."""
        with self._guard("count_history"):
            row = self._ensure_connected().execute(
                "SELECT COUNT(*) FROM history WHERE parent_id = ?", (parent_id,)
            ).fetchone()
        return row[0]

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with document and archive counts.
        """
        with self._guard("get_stats"):
            conn = self._ensure_connected()
            stats = {
                "document_count": conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0],
                "history_count": conn.execute("SELECT COUNT(*) FROM history").fetchone()[0],
            }

        if self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
