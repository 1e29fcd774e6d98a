"""Client-side sync state machine.

Owns the locally edited copy of the document and decides when to push it,
when to poll the server in the background and when a conflict needs a
user decision.

States::

    idle ──(debounce fires)──> syncing ──> synced
      ^                          │    └──> conflict ──(keep_local/load_cloud)──> ...
      └────────(edit)────────────┘    └──> error

Background polls run the same push without entering ``syncing``.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..errors import TransportError, UnauthorizedError
from ..models import DEFAULT_DOCUMENT_ID, UNSET_TIMESTAMP, SyncResult
from .local_cache import LocalCache
from .transport import SyncTransport

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """User-visible sync status."""

    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass
class ClientState:
    """The client's view of the document."""

    local_content: str = ""
    local_timestamp: int = UNSET_TIMESTAMP
    sync_status: SyncStatus = SyncStatus.IDLE


@dataclass
class PendingConflict:
    """Newer server revision waiting for the user to accept or reject it."""

    content: str
    timestamp: int


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return int(time.time() * 1000)


StatusListener = Callable[[SyncStatus], None]
ContentListener = Callable[[str], None]


class SyncStateMachine:
    """Drives debounced pushes, background polls and conflict handling.

    All work runs on one asyncio event loop. The debounce timer and the poll
    loop both funnel into ``push``, which never runs twice at once: a
    foreground push requested while one is in flight queues a single
    follow-up, and a background push is simply dropped.
    """

    def __init__(
        self,
        transport: SyncTransport,
        cache: LocalCache | None = None,
        document_id: str = DEFAULT_DOCUMENT_ID,
        debounce_seconds: float = 2.0,
        poll_interval_seconds: float = 4.0,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the state machine.

        Args:
            transport: Transport used to reach the server.
            cache: Optional durable cache for the local copy.
            document_id: Key of the document in the cache.
            debounce_seconds: Quiet period after an edit before pushing.
            poll_interval_seconds: Seconds between background polls.
            clock: Millisecond clock used to stamp local edits.
        """
        self.transport = transport
        self.cache = cache
        self.document_id = document_id
        self.debounce_seconds = debounce_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock

        self.state = ClientState()
        self.pending: PendingConflict | None = None
        self._last_error: str | None = None

        self._debounce_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._running = False
        self._push_in_flight = False
        self._follow_up = False

        self._status_listeners: list[StatusListener] = []
        self._remote_content_listeners: list[ContentListener] = []

    # ==================== Observation ====================

    @property
    def content(self) -> str:
        return self.state.local_content

    @property
    def timestamp(self) -> int:
        return self.state.local_timestamp

    @property
    def status(self) -> SyncStatus:
        return self.state.sync_status

    @property
    def has_conflict(self) -> bool:
        return self.pending is not None

    @property
    def last_error(self) -> str | None:
        """Description of the most recent failed push, cleared on success."""
        return self._last_error

    @property
    def push_in_flight(self) -> bool:
        return self._push_in_flight

    def add_status_listener(self, listener: StatusListener) -> None:
        """Call ``listener`` with the new status on every status change."""
        self._status_listeners.append(listener)

    def add_remote_content_listener(self, listener: ContentListener) -> None:
        """Call ``listener`` whenever server content replaces the local copy."""
        self._remote_content_listeners.append(listener)

    def _notify(self, listeners: list, value) -> None:
        for listener in listeners:
            try:
                listener(value)
            except Exception as e:
                logger.error(f"Listener {listener!r} failed: {e}", exc_info=True)

    # ==================== State updates ====================

    def _set_status(self, status: SyncStatus) -> None:
        if status == self.state.sync_status:
            return
        logger.debug(f"Status {self.state.sync_status.value} -> {status.value}")
        self.state.sync_status = status
        self._notify(self._status_listeners, status)

    def _set_local(self, content: str, timestamp: int, remote: bool = False) -> None:
        """Replace content and timestamp together and persist them."""
        self.state.local_content = content
        self.state.local_timestamp = timestamp
        if self.cache is not None:
            self.cache.save(self.document_id, content, timestamp)
        if remote:
            self._notify(self._remote_content_listeners, content)

    def _next_timestamp(self, floor: int = UNSET_TIMESTAMP) -> int:
        """Stamp for a new local revision, strictly above any seen so far."""
        return max(self._clock(), self.state.local_timestamp + 1, floor + 1)

    def load_from_cache(self) -> bool:
        """Seed the local state from the durable cache.

        Returns:
            True if a cached copy was found.
        """
        if self.cache is None:
            return False
        cached = self.cache.load(self.document_id)
        if cached is None:
            return False
        self.state.local_content = cached.content
        self.state.local_timestamp = cached.timestamp
        logger.info(f"Loaded cached copy of {self.document_id} (ts={cached.timestamp})")
        return True

    # ==================== Lifecycle ====================

    async def start(self, initial_sync: bool = True) -> None:
        """Load the cached copy, sync once and start background polling.

        Args:
            initial_sync: Perform a foreground push before polling starts.
                A client without a cached copy adopts the server's revision.
        """
        if self._running:
            return

        self.load_from_cache()
        self._running = True

        if initial_sync:
            await self.push()

        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Sync started (debounce={self.debounce_seconds}s, "
            f"poll={self.poll_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop polling and drop any not-yet-fired debounced push."""
        self._running = False
        for task in (self._debounce_task, self._poll_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._debounce_task = None
        self._poll_task = None
        logger.info("Sync stopped")

    async def _poll_loop(self) -> None:
        """Background polling loop."""
        while self._running:
            await asyncio.sleep(self.poll_interval_seconds)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Background poll failed: {e}", exc_info=True)

    # ==================== Local edits ====================

    def edit(self, content: str) -> None:
        """Record a local edit and schedule a debounced push.

        The new content and timestamp are applied (and cached) immediately.
        While a conflict is pending, the edit is kept locally but nothing is
        pushed until the user resolves the conflict.
        """
        self._set_local(content, self._next_timestamp())
        if self.pending is not None:
            return
        self._set_status(SyncStatus.IDLE)
        self._arm_debounce()

    def _arm_debounce(self) -> None:
        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(self._debounced_push())

    def _cancel_debounce(self) -> bool:
        """Drop a scheduled push that has not fired yet."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
            self._debounce_task = None
            return True
        self._debounce_task = None
        return False

    async def _debounced_push(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Fired: a later edit must not cancel the push from here on
        self._debounce_task = None
        try:
            await self.push()
        except Exception as e:
            logger.error(f"Debounced push failed: {e}", exc_info=True)

    async def flush(self) -> SyncResult | None:
        """Fire a scheduled push now instead of waiting for the debounce."""
        if not self._cancel_debounce():
            return None
        return await self.push()

    # ==================== Push ====================

    async def push(self, background: bool = False) -> SyncResult | None:
        """Send the local copy to the server and apply the answer.

        Args:
            background: Silent poll; does not show the ``syncing`` status.

        Returns:
            The server's answer to the last request made, or None if no
            request was made or it failed.
        """
        if self.pending is not None:
            logger.debug("Push skipped: conflict awaiting resolution")
            return None

        if self._push_in_flight:
            if not background:
                self._follow_up = True
            return None

        self._push_in_flight = True
        try:
            result = await self._push_once(background)
            while self._follow_up and self.pending is None:
                self._follow_up = False
                result = await self._push_once(background=False)
            return result
        finally:
            self._follow_up = False
            self._push_in_flight = False

    async def poll_once(self) -> SyncResult | None:
        """Background reconciliation, skipped while busy or in conflict."""
        if (
            self.state.sync_status == SyncStatus.SYNCING
            or self.pending is not None
            or self._push_in_flight
        ):
            return None
        return await self.push(background=True)

    async def _push_once(self, background: bool) -> SyncResult | None:
        content = self.state.local_content
        sent_timestamp = self.state.local_timestamp

        if not background:
            self._set_status(SyncStatus.SYNCING)

        try:
            result = await self.transport.sync(content, sent_timestamp)
        except UnauthorizedError as e:
            self._fail(f"Unauthorized: {e}")
            return None
        except TransportError as e:
            self._fail(str(e))
            return None

        self._last_error = None
        self._apply_result(result, sent_timestamp)
        return result

    def _fail(self, message: str) -> None:
        logger.warning(f"Sync failed: {message}")
        self._last_error = message
        self._set_status(SyncStatus.ERROR)

    def _apply_result(self, result: SyncResult, sent_timestamp: int) -> None:
        if not result.is_conflict:
            self._set_status(SyncStatus.SYNCED)
            return

        local_timestamp = self.state.local_timestamp

        # Edited while the request was in flight and the edit is newer than
        # the server copy: the follow-up push will win, keep local content.
        if local_timestamp != sent_timestamp and result.timestamp <= local_timestamp:
            logger.debug(
                f"Ignoring conflict ts={result.timestamp}, "
                f"superseded by local ts={local_timestamp}"
            )
            self._set_status(SyncStatus.IDLE)
            return

        # Nothing local worth protecting yet: take the server copy
        if local_timestamp == UNSET_TIMESTAMP:
            logger.info(f"Adopted server copy ts={result.timestamp} on first sync")
            self._set_local(result.content, result.timestamp, remote=True)
            self._set_status(SyncStatus.SYNCED)
            return

        logger.info(
            f"Conflict: server ts={result.timestamp} is newer than local "
            f"ts={local_timestamp}"
        )
        self._cancel_debounce()
        self.pending = PendingConflict(content=result.content, timestamp=result.timestamp)
        self._set_status(SyncStatus.CONFLICT)

    # ==================== Conflict resolution ====================

    async def keep_local(self) -> SyncResult | None:
        """Resolve a conflict by re-asserting the local copy.

        The local copy is restamped above the server's revision so the
        server accepts it and archives its own.
        """
        pending = self.pending
        if pending is None:
            logger.debug("keep_local called without a pending conflict")
            return None

        self.pending = None
        self._cancel_debounce()
        self._set_local(self.state.local_content, self._next_timestamp(pending.timestamp))
        return await self.push()

    def load_cloud(self) -> bool:
        """Resolve a conflict by adopting the server's revision.

        Returns:
            True if a pending conflict was resolved.
        """
        pending = self.pending
        if pending is None:
            return False

        self.pending = None
        self._cancel_debounce()
        self._set_local(pending.content, pending.timestamp, remote=True)
        self._set_status(SyncStatus.SYNCED)
        return True

    # ==================== History ====================

    async def list_history(self, limit: int | None = None):
        """List archived revisions on the server, newest first."""
        return await self.transport.list_history(limit)

    async def restore_revision(self, entry_id: int) -> SyncResult | None:
        """Make an archived revision current again.

        Loads its content as a fresh local edit and pushes it immediately;
        the revision it replaces is archived by the server as usual. Also
        resolves any pending conflict.
        """
        try:
            content = await self.transport.get_history_content(entry_id)
        except (TransportError, UnauthorizedError) as e:
            self._fail(f"Could not fetch revision #{entry_id}: {e}")
            return None
        if content is None:
            self._fail(f"No archived revision #{entry_id}")
            return None

        floor = UNSET_TIMESTAMP
        if self.pending is not None:
            floor = self.pending.timestamp
            self.pending = None

        self._cancel_debounce()
        self._set_local(content, self._next_timestamp(floor), remote=True)
        logger.info(f"Restoring revision #{entry_id}")
        return await self.push()
