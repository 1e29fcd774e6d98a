"""CLI entry point for todosync."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import StoreError, TransportError, UnauthorizedError


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )


def _format_ts(timestamp: int) -> str:
    """Render a millisecond timestamp for humans."""
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _build_client(config: Config):
    """Create transport, cache and state machine from client config."""
    from .client import LocalCache, SyncStateMachine, SyncTransport

    transport = SyncTransport(
        config.client.server_url,
        config.client.password,
        timeout=config.client.timeout_seconds,
    )
    cache = LocalCache(config.client.cache_path)
    cache.connect()
    machine = SyncStateMachine(
        transport,
        cache=cache,
        document_id=config.client.document_id,
        debounce_seconds=config.client.debounce_seconds,
        poll_interval_seconds=config.client.poll_interval_seconds,
    )
    return transport, cache, machine


async def _resolve_conflict(machine, policy: str) -> bool:
    """Apply the user's standing conflict decision.

    Returns:
        True if the conflict was resolved.
    """
    if not machine.has_conflict:
        return True
    if policy == "local":
        print("Conflict: keeping local copy")
        await machine.keep_local()
        return True
    if policy == "cloud":
        print("Conflict: loading server copy")
        machine.load_cloud()
        return True

    pending = machine.pending
    print(
        f"Conflict: server holds a newer revision ({_format_ts(pending.timestamp)}).",
        file=sys.stderr,
    )
    print("Re-run with --on-conflict local or --on-conflict cloud", file=sys.stderr)
    return False


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create the server database schema."""
    from .store import DocumentStore

    config = load_config(args.config)
    store = DocumentStore(config.server.db_path)
    try:
        store.connect()
        stats = store.get_stats()
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(f"Database ready: {store.db_path}")
    print(f"  Documents: {stats['document_count']}")
    print(f"  History entries: {stats['history_count']}")
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the sync server."""
    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    if not config.server.password:
        print("Error: no server password configured", file=sys.stderr)
        print("Set server.password in the config file or TODOSYNC_PASSWORD", file=sys.stderr)
        return 1

    import uvicorn

    from .server import create_app
    from .store import DocumentStore

    store = DocumentStore(config.server.db_path)
    store.connect()

    print("Starting todosync server")
    print(f"Document: {config.server.document_id}")
    print(f"Database: {store.db_path}")
    print(f"Equal-timestamp policy: {config.server.equal_timestamp_policy}")
    print(f"URL: http://{config.server.host}:{config.server.port}")

    app = create_app(config, store)

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=config.server.host,
            port=config.server.port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        store.close()

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Report server health and the cached local copy."""
    config = load_config(args.config)
    transport, cache, machine = _build_client(config)

    try:
        health = await transport.check_health()
        has_cache = machine.load_from_cache()
    finally:
        await transport.close()
        cache.close()

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "server": {
            "url": config.client.server_url,
            "reachable": health is not None,
            "health": health,
        },
        "local": {
            "document_id": config.client.document_id,
            "cache_path": str(cache.db_path),
            "cached": has_cache,
            "timestamp": machine.timestamp,
            "length": len(machine.content),
        },
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("todosync Status Check")
    print("=====================")
    print(f"Server ({config.client.server_url}):")
    if health:
        print("  Status: Reachable")
        print(f"  Document: {health.get('document_id')}")
        components = health.get("components", {})
        print(f"  Store: {'OK' if components.get('store') else 'Unavailable'}")
        if "history_entries" in components:
            print(f"  History entries: {components['history_entries']}")
    else:
        print("  Status: Not reachable")

    print()
    print(f"Local copy ({cache.db_path}):")
    if has_cache:
        print(f"  Last change: {_format_ts(machine.timestamp)}")
        print(f"  Size: {len(machine.content)} characters")
    else:
        print("  No cached copy (next sync adopts the server copy)")

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Sync the cached local copy once."""
    config = load_config(args.config)
    transport, cache, machine = _build_client(config)

    try:
        if args.reset:
            cache.clear(config.client.document_id)
            print("Cleared local copy; adopting the server copy")
        machine.load_from_cache()
        await machine.push()
        if not await _resolve_conflict(machine, args.on_conflict):
            return 2
        print(f"Status: {machine.status.value}")
        if machine.last_error:
            print(f"Error: {machine.last_error}", file=sys.stderr)
            return 1
    finally:
        await transport.close()
        cache.close()

    if args.output:
        Path(args.output).write_text(machine.content)
        print(f"Wrote {args.output}")

    return 0


async def cmd_edit(args: argparse.Namespace) -> int:
    """Push a file's contents as a new local edit."""
    config = load_config(args.config)
    path = Path(args.file)
    if not path.exists():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    transport, cache, machine = _build_client(config)
    try:
        machine.load_from_cache()
        machine.edit(path.read_text())
        await machine.flush()
        if not await _resolve_conflict(machine, args.on_conflict):
            return 2
        print(f"Status: {machine.status.value}")
        if machine.last_error:
            print(f"Error: {machine.last_error}", file=sys.stderr)
            return 1
    finally:
        await transport.close()
        cache.close()

    return 0


async def cmd_history_list(args: argparse.Namespace) -> int:
    """List archived revisions."""
    config = load_config(args.config)
    transport, cache, machine = _build_client(config)

    try:
        entries = await machine.list_history(args.limit)
    except (TransportError, UnauthorizedError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await transport.close()
        cache.close()

    if args.json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return 0

    if not entries:
        print("No archived revisions.")
        return 0

    for entry in entries:
        print(f"  #{entry.id:<6} {_format_ts(entry.created_at)}")
    return 0


async def cmd_history_get(args: argparse.Namespace) -> int:
    """Print an archived revision."""
    config = load_config(args.config)
    transport, cache, _ = _build_client(config)

    try:
        content = await transport.get_history_content(args.id)
    except (TransportError, UnauthorizedError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await transport.close()
        cache.close()

    if content is None:
        print(f"Error: no archived revision #{args.id}", file=sys.stderr)
        return 1
    sys.stdout.write(content)
    return 0


async def cmd_history_restore(args: argparse.Namespace) -> int:
    """Make an archived revision current again."""
    config = load_config(args.config)
    transport, cache, machine = _build_client(config)

    try:
        machine.load_from_cache()
        await machine.restore_revision(args.id)
        print(f"Status: {machine.status.value}")
        if machine.last_error:
            print(f"Error: {machine.last_error}", file=sys.stderr)
            return 1
    finally:
        await transport.close()
        cache.close()

    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Mirror a text file through the sync state machine until interrupted."""
    from .client import SyncStatus

    config = load_config(args.config)
    path = Path(args.file)
    transport, cache, machine = _build_client(config)
    logger = logging.getLogger("todosync.watch")

    last_written: dict[str, str] = {}
    resolutions: set[asyncio.Task] = set()

    def write_remote(content: str) -> None:
        path.write_text(content)
        last_written["content"] = content
        logger.info(f"Updated {path} from server")

    def on_status(status: SyncStatus) -> None:
        print(f"[{datetime.now():%H:%M:%S}] {status.value}")
        if status == SyncStatus.CONFLICT:
            task = asyncio.get_running_loop().create_task(
                _resolve_conflict(machine, args.on_conflict)
            )
            resolutions.add(task)
            task.add_done_callback(resolutions.discard)

    machine.add_remote_content_listener(write_remote)
    machine.add_status_listener(on_status)

    try:
        if path.exists():
            machine.load_from_cache()
            text = path.read_text()
            if text != machine.content:
                machine.edit(text)
        await machine.start()
        if not path.exists():
            write_remote(machine.content)

        print(f"Watching {path} (Ctrl+C to stop)")
        while True:
            await asyncio.sleep(args.interval)
            if not path.exists():
                continue
            text = path.read_text()
            if text != machine.content and text != last_written.get("content"):
                machine.edit(text)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await machine.flush()
        await machine.stop()
        await transport.close()
        cache.close()

    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="todosync",
        description="Keep a plain-text todo list in sync across clients",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Server commands
    serve_parser = subparsers.add_parser("serve", help="Start the sync server")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.set_defaults(func=cmd_serve)

    init_parser = subparsers.add_parser("init-db", help="Create the server database")
    init_parser.set_defaults(func=cmd_init_db)

    # Client commands
    status_parser = subparsers.add_parser("status", help="Check server and local copy")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    conflict_choices = ["fail", "local", "cloud"]

    sync_parser = subparsers.add_parser("sync", help="Sync the cached copy once")
    sync_parser.add_argument(
        "--on-conflict", choices=conflict_choices, default="fail",
        help="How to resolve a conflict (default: fail)",
    )
    sync_parser.add_argument("-o", "--output", help="Write the synced copy to this file")
    sync_parser.add_argument(
        "--reset", action="store_true",
        help="Discard the cached copy and take the server's",
    )
    sync_parser.set_defaults(func=cmd_sync)

    edit_parser = subparsers.add_parser("edit", help="Push a file as a new edit")
    edit_parser.add_argument("file", help="Text file holding the new content")
    edit_parser.add_argument(
        "--on-conflict", choices=conflict_choices, default="fail",
        help="How to resolve a conflict (default: fail)",
    )
    edit_parser.set_defaults(func=cmd_edit)

    watch_parser = subparsers.add_parser("watch", help="Keep a file in sync")
    watch_parser.add_argument("file", help="Text file to mirror")
    watch_parser.add_argument(
        "--on-conflict", choices=["local", "cloud"], default="cloud",
        help="How to resolve conflicts (default: cloud)",
    )
    watch_parser.add_argument(
        "--interval", type=float, default=0.5,
        help="Seconds between file checks (default: 0.5)",
    )
    watch_parser.set_defaults(func=cmd_watch)

    # History commands
    history_parser = subparsers.add_parser("history", help="Browse archived revisions")
    history_subparsers = history_parser.add_subparsers(dest="history_command", help="History commands")

    history_list = history_subparsers.add_parser("list", help="List recent revisions")
    history_list.add_argument("-n", "--limit", type=int, default=None, help="Maximum entries")
    history_list.add_argument("--json", action="store_true", help="Output as JSON")
    history_list.set_defaults(func=cmd_history_list)

    history_get = history_subparsers.add_parser("get", help="Print a revision")
    history_get.add_argument("id", type=int, help="History entry id")
    history_get.set_defaults(func=cmd_history_get)

    history_restore = history_subparsers.add_parser("restore", help="Make a revision current")
    history_restore.add_argument("id", type=int, help="History entry id")
    history_restore.set_defaults(func=cmd_history_restore)

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    log_level = args.log_level or (None if args.verbose else config.logging.level)
    setup_logging(args.verbose, log_level, args.log_json or config.logging.json)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "history" and not args.history_command:
        history_parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        try:
            return asyncio.run(func(args))
        except KeyboardInterrupt:
            return 130
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
