"""Tests for the command-line entry point."""

import argparse
import asyncio
import json
import logging
import sys

import httpx
import pytest

import todosync.__main__ as cli
import todosync.client
from todosync.client import LocalCache, SyncTransport
from todosync.config import Config, ServerConfig
from todosync.models import CurrentDocument
from todosync.store import DocumentStore

PASSWORD = "shared-secret"

# Far beyond any wall-clock millisecond timestamp
FUTURE_TS = 10**15


@pytest.fixture
def run_cli(monkeypatch):
    """Run main() with the given arguments, leaving logging untouched."""
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    def run(*argv):
        monkeypatch.setattr(sys, "argv", ["todosync", *argv])
        return cli.main()

    return run


class TestJSONFormatter:
    """Tests for structured log output."""

    def test_format(self):
        """Test that a record becomes one JSON object."""
        record = logging.LogRecord(
            "todosync.server", logging.WARNING, __file__, 1, "Sync failed: %s", ("down",), None
        )

        data = json.loads(cli.JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["component"] == "todosync.server"
        assert data["message"] == "Sync failed: down"
        assert "exception" not in data

    def test_format_exception(self):
        """Test that exception info is included."""
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "todosync", logging.ERROR, __file__, 1, "oops", (), sys.exc_info()
            )

        data = json.loads(cli.JSONFormatter().format(record))

        assert "ValueError: bad" in data["exception"]


class TestCommands:
    """Tests for subcommand dispatch."""

    def test_no_command(self, run_cli):
        """Test that running without a command prints help and fails."""
        assert run_cli() == 1

    def test_history_without_subcommand(self, run_cli):
        """Test that history requires list/get/restore."""
        assert run_cli("history") == 1

    def test_init_db(self, run_cli, tmp_path, monkeypatch, capsys):
        """Test that init-db creates the server database."""
        db_path = tmp_path / "server.db"
        monkeypatch.setenv("TODOSYNC_DB_PATH", str(db_path))

        assert run_cli("init-db") == 0

        assert db_path.exists()
        assert "Database ready" in capsys.readouterr().out
        store = DocumentStore(db_path)
        store.connect()
        assert store.get_stats()["document_count"] == 0
        store.close()

    def test_serve_requires_password(self, run_cli, monkeypatch, capsys):
        """Test that the server refuses to start without a credential."""
        monkeypatch.delenv("TODOSYNC_PASSWORD", raising=False)

        assert run_cli("serve") == 1
        assert "no server password" in capsys.readouterr().err

    def test_invalid_config(self, run_cli, tmp_path):
        """Test that a bad config file is reported, not raised."""
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  equal_timestamp_policy: merge\n")

        assert run_cli("-c", str(path), "init-db") == 1


@pytest.fixture
def store():
    store = DocumentStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "client.db"


@pytest.fixture
def server(store, cache_path, monkeypatch):
    """Point client commands at an in-process app."""
    pytest.importorskip("fastapi")
    from todosync.server import create_app

    app = create_app(Config(server=ServerConfig(password=PASSWORD)), store)

    def make_transport(server_url, password, timeout=10.0):
        return SyncTransport(
            server_url, password, timeout=timeout, transport=httpx.ASGITransport(app=app)
        )

    for key in ("DOCUMENT_ID", "LOG_LEVEL", "LOG_JSON"):
        monkeypatch.delenv(f"TODOSYNC_{key}", raising=False)
    monkeypatch.setenv("TODOSYNC_PASSWORD", PASSWORD)
    monkeypatch.setenv("TODOSYNC_SERVER_URL", "http://todosync.test")
    monkeypatch.setenv("TODOSYNC_CACHE_PATH", str(cache_path))
    monkeypatch.setattr(todosync.client, "SyncTransport", make_transport)
    return app


def seed_server(store, content, ts):
    store.insert_document(CurrentDocument(id="main", content=content, updated_at=ts))


def seed_cache(cache_path, content, ts):
    cache = LocalCache(cache_path)
    cache.save("main", content, ts)
    cache.close()


def cached(cache_path):
    cache = LocalCache(cache_path)
    doc = cache.load("main")
    cache.close()
    return doc


class TestEditCommand:
    """Tests for pushing a file as a new edit."""

    def test_edit_first_write(self, run_cli, server, store, tmp_path, capsys):
        """Test that an edit reaches an empty server."""
        path = tmp_path / "todo.txt"
        path.write_text("- buy milk\n")

        assert run_cli("edit", str(path)) == 0

        assert store.get_document("main").content == "- buy milk\n"
        assert "Status: synced" in capsys.readouterr().out

    def test_edit_missing_file(self, run_cli, server, tmp_path):
        """Test that a missing file is an error."""
        assert run_cli("edit", str(tmp_path / "absent.txt")) == 1

    def test_conflict_fails_by_default(self, run_cli, server, store, tmp_path, cache_path, capsys):
        """Test that a conflict is reported and nothing is overwritten."""
        seed_server(store, "- theirs", FUTURE_TS)
        path = tmp_path / "todo.txt"
        path.write_text("- mine")

        assert run_cli("edit", str(path)) == 2

        assert "--on-conflict" in capsys.readouterr().err
        assert store.get_document("main").content == "- theirs"
        assert cached(cache_path).content == "- mine"

    def test_conflict_keep_local(self, run_cli, server, store, tmp_path, capsys):
        """Test that --on-conflict local overwrites the newer server copy."""
        seed_server(store, "- theirs", FUTURE_TS)
        path = tmp_path / "todo.txt"
        path.write_text("- mine")

        assert run_cli("edit", str(path), "--on-conflict", "local") == 0

        doc = store.get_document("main")
        assert doc.content == "- mine"
        assert doc.updated_at > FUTURE_TS
        assert store.count_history("main") == 1
        assert "keeping local copy" in capsys.readouterr().out

    def test_conflict_load_cloud(self, run_cli, server, store, tmp_path, cache_path):
        """Test that --on-conflict cloud adopts the server copy locally."""
        seed_server(store, "- theirs", FUTURE_TS)
        path = tmp_path / "todo.txt"
        path.write_text("- mine")

        assert run_cli("edit", str(path), "--on-conflict", "cloud") == 0

        assert store.get_document("main").content == "- theirs"
        assert cached(cache_path).content == "- theirs"
        assert cached(cache_path).timestamp == FUTURE_TS


class TestSyncCommand:
    """Tests for one-shot sync of the cached copy."""

    def test_adopts_server_copy(self, run_cli, server, store, tmp_path, cache_path):
        """Test that a client without a cache takes the server copy."""
        seed_server(store, "- shared", 500)
        output = tmp_path / "out.txt"

        assert run_cli("sync", "-o", str(output)) == 0

        assert output.read_text() == "- shared"
        assert cached(cache_path).timestamp == 500

    def test_conflict_fails(self, run_cli, server, store, cache_path):
        """Test that a stale cached edit stops with a conflict."""
        seed_server(store, "- theirs", FUTURE_TS)
        seed_cache(cache_path, "- mine", 100)

        assert run_cli("sync") == 2

        assert cached(cache_path).content == "- mine"

    def test_conflict_load_cloud(self, run_cli, server, store, tmp_path, cache_path):
        """Test that --on-conflict cloud writes the server copy out."""
        seed_server(store, "- theirs", FUTURE_TS)
        seed_cache(cache_path, "- mine", 100)
        output = tmp_path / "out.txt"

        assert run_cli("sync", "--on-conflict", "cloud", "-o", str(output)) == 0

        assert output.read_text() == "- theirs"
        assert store.count_history("main") == 0

    def test_reset_discards_cache(self, run_cli, server, store, cache_path):
        """Test that --reset forgets the cached copy before syncing."""
        seed_server(store, "- theirs", FUTURE_TS)
        seed_cache(cache_path, "- mine", 100)

        assert run_cli("sync", "--reset") == 0

        assert cached(cache_path).content == "- theirs"

    def test_wrong_password(self, run_cli, server, store, monkeypatch, capsys):
        """Test that a bad credential is reported as an error."""
        # The app keeps its own password; only the client side changes
        monkeypatch.setenv("TODOSYNC_PASSWORD", "guess")

        assert run_cli("sync") == 1

        assert "Error" in capsys.readouterr().err


class TestHistoryCommands:
    """Tests for history list/get/restore."""

    @pytest.fixture
    def archived(self, store):
        seed_server(store, "- current", 3000)
        first = store.append_history("main", "- first", 1000)
        second = store.append_history("main", "- second", 2000)
        return first, second

    def test_list_json(self, run_cli, server, archived, capsys):
        """Test listing revisions newest first."""
        first, second = archived

        assert run_cli("history", "list", "--json") == 0

        entries = json.loads(capsys.readouterr().out)
        assert [e["id"] for e in entries] == [second, first]
        assert [e["createdAt"] for e in entries] == [2000, 1000]

    def test_get(self, run_cli, server, archived, capsys):
        """Test printing an archived revision."""
        first, _ = archived

        assert run_cli("history", "get", str(first)) == 0

        assert capsys.readouterr().out == "- first"

    def test_get_unknown(self, run_cli, server, archived, capsys):
        """Test that an unknown id is an error."""
        assert run_cli("history", "get", "999") == 1

        assert "no archived revision" in capsys.readouterr().err

    def test_restore(self, run_cli, server, store, archived, cache_path):
        """Test that restore makes the revision current and archives the old one."""
        first, _ = archived

        assert run_cli("history", "restore", str(first)) == 0

        assert store.get_document("main").content == "- first"
        assert store.count_history("main") == 3
        assert cached(cache_path).content == "- first"

    def test_restore_unknown(self, run_cli, server, store, archived):
        """Test that restoring an unknown id leaves the document alone."""
        assert run_cli("history", "restore", "999") == 1

        assert store.get_document("main").content == "- current"
        assert store.count_history("main") == 2


class TestWatchCommand:
    """Tests for mirroring a file."""

    @pytest.mark.asyncio
    async def test_watch_pushes_and_adopts_remote(self, server, store, tmp_path, monkeypatch):
        """Test that the file is pushed and a newer server copy is written back."""
        monkeypatch.setenv("TODOSYNC_DEBOUNCE_SECONDS", "0.01")
        monkeypatch.setenv("TODOSYNC_POLL_INTERVAL_SECONDS", "0.02")
        path = tmp_path / "todo.txt"
        path.write_text("- from file")
        args = argparse.Namespace(config=None, file=str(path), on_conflict="cloud", interval=0.01)

        task = asyncio.create_task(cli.cmd_watch(args))

        async def wait_for(condition):
            for _ in range(200):
                if condition():
                    return
                await asyncio.sleep(0.01)
            raise AssertionError("condition not reached")

        await wait_for(lambda: store.get_document("main") is not None)
        assert store.get_document("main").content == "- from file"

        # Another client wins with a newer revision
        with store.transaction():
            store.append_history("main", "- from file", store.get_document("main").updated_at)
            store.update_document("main", "- from server", FUTURE_TS)

        await wait_for(lambda: path.read_text() == "- from server")

        task.cancel()
        assert await task == 0
