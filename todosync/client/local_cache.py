"""Durable client-side copy of the document, keyed by document id."""

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS local_documents (
    doc_id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    timestamp INTEGER NOT NULL
);
"""


@dataclass
class CachedDocument:
    """Last locally known copy of a document."""

    content: str
    timestamp: int


class LocalCache:
    """Small SQLite key-value store that survives client restarts.

    Written on every local edit and read once at startup; it carries no
    sync semantics of its own.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the cache.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(CACHE_SCHEMA)
        self._conn.commit()

        logger.debug(f"LocalCache connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def load(self, doc_id: str) -> CachedDocument | None:
        """Read the cached copy of a document, if any."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT content, timestamp FROM local_documents WHERE doc_id = ?",
            (doc_id,),
        ).fetchone()
        if row is None:
            return None
        return CachedDocument(content=row["content"], timestamp=row["timestamp"])

    def save(self, doc_id: str, content: str, timestamp: int) -> None:
        """Persist content and its timestamp together."""
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO local_documents (doc_id, content, timestamp)
            VALUES (?, ?, ?)
            ON CONFLICT(doc_id) DO UPDATE SET
                content = excluded.content,
                timestamp = excluded.timestamp
            """,
            (doc_id, content, timestamp),
        )
        conn.commit()

    def clear(self, doc_id: str) -> None:
        """Forget the cached copy of a document."""
        conn = self._ensure_connected()
        conn.execute("DELETE FROM local_documents WHERE doc_id = ?", (doc_id,))
        conn.commit()
