"""Data types exchanged between the store, the services and the client."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

# Local timestamp of a client that has never edited or accepted a revision.
UNSET_TIMESTAMP = 0

# Largest value a SQLite INTEGER column holds; bounds timestamps and ids.
MAX_INTEGER = 2**63 - 1

DEFAULT_DOCUMENT_ID = "main"


class SyncOutcome(Enum):
    """Outcome of a sync call."""

    SYNCED = "synced"
    CONFLICT = "conflict"  # Server holds a newer revision


@dataclass
class SyncResult:
    """Result of a sync call.

    ``content`` is only set for conflicts, where it carries the server's
    current revision so the client can adopt or reject it.
    """

    outcome: SyncOutcome
    timestamp: int
    content: str | None = None

    @classmethod
    def synced(cls, timestamp: int) -> "SyncResult":
        return cls(outcome=SyncOutcome.SYNCED, timestamp=timestamp)

    @classmethod
    def conflict(cls, content: str, timestamp: int) -> "SyncResult":
        return cls(outcome=SyncOutcome.CONFLICT, timestamp=timestamp, content=content)

    @property
    def is_conflict(self) -> bool:
        return self.outcome == SyncOutcome.CONFLICT

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data: dict[str, Any] = {
            "status": self.outcome.value,
            "timestamp": self.timestamp,
        }
        if self.is_conflict:
            data["content"] = self.content
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncResult":
        """Create from the wire representation.

        Raises:
            ValueError: If the status is unknown or a field is missing.
        """
        try:
            outcome = SyncOutcome(data["status"])
            timestamp = int(data["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed sync response: {data!r}") from e

        if outcome == SyncOutcome.CONFLICT:
            content = data.get("content")
            if not isinstance(content, str):
                raise ValueError("Conflict response is missing content")
            return cls.conflict(content, timestamp)

        return cls.synced(timestamp)


@dataclass
class CurrentDocument:
    """The authoritative revision of a document."""

    id: str
    content: str
    updated_at: int


@dataclass
class HistoryEntry:
    """An archived revision that was superseded by a newer write."""

    id: int
    parent_id: str
    content: str
    created_at: int


@dataclass
class HistorySummary:
    """History listing row, without the content payload."""

    id: int
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistorySummary":
        return cls(id=int(data["id"]), created_at=int(data["createdAt"]))
