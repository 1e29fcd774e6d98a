"""Tests for the last-write-wins sync service."""

import threading
from unittest.mock import patch

import pytest

from todosync.errors import InvalidRequestError, StoreUnavailableError
from todosync.models import SyncOutcome, SyncResult
from todosync.server import EqualTimestampPolicy, HistoryService, SyncService
from todosync.store import DocumentStore


@pytest.fixture
def store():
    """Create an in-memory DocumentStore."""
    store = DocumentStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def service(store):
    """Create a sync service over the store."""
    return SyncService(store, document_id="main")


def archived(store, doc_id="main"):
    """Return (content, created_at) of every archive entry, oldest first."""
    rows = store._conn.execute(
        "SELECT content, created_at FROM history WHERE parent_id = ? ORDER BY id",
        (doc_id,),
    ).fetchall()
    return [(row["content"], row["created_at"]) for row in rows]


class TestFirstWrite:
    """Tests for syncing against an empty store."""

    def test_first_write_creates_document(self, service, store):
        """Test that the first sync stores the client's copy as-is."""
        result = service.sync("- buy milk", 1000)

        assert result == SyncResult.synced(1000)
        doc = store.get_document("main")
        assert doc.content == "- buy milk"
        assert doc.updated_at == 1000
        assert archived(store) == []

    def test_first_write_accepts_empty_content(self, service, store):
        """Test that empty content is a valid document."""
        result = service.sync("", 0)

        assert result.outcome == SyncOutcome.SYNCED
        assert store.get_document("main").content == ""


class TestNewerWrite:
    """Tests for pushes that supersede the stored revision."""

    def test_newer_write_archives_previous(self, service, store):
        """Test that the replaced revision is archived with its own timestamp."""
        service.sync("v1", 100)

        result = service.sync("v2", 200)

        assert result == SyncResult.synced(200)
        assert store.get_document("main").content == "v2"
        assert archived(store) == [("v1", 100)]

    def test_monotonic_sequence_archives_all_but_last(self, service, store):
        """Test a run of strictly increasing pushes."""
        pushes = [(f"c{i}", 100 * i) for i in range(1, 6)]

        for content, ts in pushes:
            assert service.sync(content, ts).outcome == SyncOutcome.SYNCED

        doc = store.get_document("main")
        assert (doc.content, doc.updated_at) == pushes[-1]
        assert archived(store) == pushes[:-1]


class TestStaleAndEqualWrites:
    """Tests for pushes that do not supersede the stored revision."""

    def test_stale_write_returns_conflict(self, service, store):
        """Test that an older push gets the server copy back."""
        service.sync("server copy", 500)

        result = service.sync("old edit", 400)

        assert result == SyncResult.conflict("server copy", 500)
        assert store.get_document("main").content == "server copy"
        assert archived(store) == []

    def test_equal_timestamp_is_noop(self, service, store):
        """Test that polling with the current timestamp changes nothing."""
        service.sync("same", 500)

        result = service.sync("same", 500)

        assert result == SyncResult.synced(500)
        assert archived(store) == []

    def test_equal_timestamp_ignores_content(self, service, store):
        """Test that an equal timestamp never overwrites the stored copy."""
        service.sync("stored", 500)

        service.sync("different", 500)

        assert store.get_document("main").content == "stored"

    def test_equal_timestamp_conflict_policy(self, store):
        """Test the alternative policy that forces reconciliation."""
        service = SyncService(store, equal_policy=EqualTimestampPolicy.CONFLICT)
        service.sync("stored", 500)

        result = service.sync("different", 500)

        assert result == SyncResult.conflict("stored", 500)
        assert archived(store) == []


class TestValidation:
    """Tests for argument checking."""

    @pytest.mark.parametrize(
        "content,timestamp",
        [(None, 1), ("x", -1), ("x", "12"), ("x", 1.5), ("x", True), ("x", 2**63)],
    )
    def test_rejects_malformed_arguments(self, service, store, content, timestamp):
        """Test that bad arguments are rejected before touching the store."""
        with pytest.raises(InvalidRequestError):
            service.sync(content, timestamp)

        assert store.get_document("main") is None


class TestStoreFailure:
    """Tests for storage failures."""

    def test_failure_leaves_no_partial_write(self, service, store):
        """Test that a failed overwrite does not leave a dangling archive entry."""
        service.sync("v1", 100)

        with patch.object(
            store,
            "update_document",
            side_effect=StoreUnavailableError("update_document failed"),
        ):
            with pytest.raises(StoreUnavailableError):
                service.sync("v2", 200)

        assert store.get_document("main").content == "v1"
        assert archived(store) == []

        # Retrying succeeds once storage recovers
        assert service.sync("v2", 200) == SyncResult.synced(200)
        assert archived(store) == [("v1", 100)]


class TestConcurrency:
    """Tests for serialization of concurrent writers."""

    def test_two_simultaneous_writers(self, service, store):
        """Test that racing writers never lose or duplicate a revision."""
        service.sync("start", 100)
        barrier = threading.Barrier(2)
        results = {}

        def push(content, ts):
            barrier.wait()
            results[content] = service.sync(content, ts)

        threads = [
            threading.Thread(target=push, args=("a", 200)),
            threading.Thread(target=push, args=("b", 300)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        doc = store.get_document("main")
        assert (doc.content, doc.updated_at) == ("b", 300)
        assert results["b"] == SyncResult.synced(300)

        history = archived(store)
        if results["a"].is_conflict:
            # b went first; a was rejected and never became current
            assert results["a"] == SyncResult.conflict("b", 300)
            assert history == [("start", 100)]
        else:
            # a went first and was then superseded by b
            assert history == [("start", 100), ("a", 200)]

    def test_many_writers_archive_each_superseded_revision_once(self, service, store):
        """Test the archival invariant under heavy contention."""
        service.sync("start", 1)
        writers = 16
        barrier = threading.Barrier(writers)
        results = {}
        lock = threading.Lock()

        def push(ts):
            barrier.wait()
            result = service.sync(f"c{ts}", ts)
            with lock:
                results[ts] = result

        threads = [threading.Thread(target=push, args=(ts,)) for ts in range(2, 2 + writers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        accepted = sorted(ts for ts, r in results.items() if not r.is_conflict)
        doc = store.get_document("main")
        history = archived(store)

        # Highest timestamp always wins
        assert doc.updated_at == 1 + writers
        assert accepted[-1] == doc.updated_at

        # Every accepted write except the current one, plus the start, is archived once
        archived_ts = [ts for _, ts in history]
        assert sorted(archived_ts) == [1] + accepted[:-1]
        assert len(set(archived_ts)) == len(archived_ts)
        for content, ts in history:
            assert content == ("start" if ts == 1 else f"c{ts}")


class TestHistoryService:
    """Tests for listing and fetching archived revisions."""

    def test_round_trip(self, service, store):
        """Test that a superseded revision can be listed and fetched."""
        history = HistoryService(store, document_id="main")
        service.sync("first draft", 100)
        service.sync("second draft", 200)

        entries = history.list_recent()

        assert [e.created_at for e in entries] == [100]
        assert history.get_content(entries[0].id) == "first draft"

    def test_list_is_capped(self, service, store):
        """Test that listing never exceeds the configured maximum."""
        history = HistoryService(store, document_id="main", max_limit=3)
        for ts in range(1, 8):
            service.sync(f"v{ts}", ts)

        assert len(history.list_recent()) == 3
        assert len(history.list_recent(limit=100)) == 3
        assert len(history.list_recent(limit=2)) == 2
        assert [e.created_at for e in history.list_recent()] == [6, 5, 4]

    def test_unknown_entry(self, store):
        """Test that an unknown id yields None rather than an error."""
        history = HistoryService(store, document_id="main")

        assert history.get_content(999) is None

    def test_entry_of_other_document_is_hidden(self, store):
        """Test that entries are scoped to the served document."""
        entry_id = store.append_history("other", "secret", 5)
        history = HistoryService(store, document_id="main")

        assert history.get_content(entry_id) is None
