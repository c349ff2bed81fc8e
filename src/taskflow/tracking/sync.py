"""Background reconciliation of time sessions with the remote store."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Iterable, Optional

from ..clock import Clock
from ..errors import RemoteWriteError, SyncError
from ..remote.base import RemoteStore, RemoteStoreError, call_remote
from ..storage import LocalStorage
from .models import SyncState, SyncStatus, TimeSession

if TYPE_CHECKING:
    import datetime

    from ..config import Settings

logger = logging.getLogger(__name__)

PENDING_SESSIONS_KEY = "pendingTimeSessions"

StatusListener = Callable[[SyncStatus], None]


@dataclass(slots=True)
class SyncOptions:
    auto_sync: bool = True
    sync_interval: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 5.0
    offline_mode: bool = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SyncOptions":
        return cls(
            auto_sync=settings.sync_auto,
            sync_interval=settings.sync_interval_seconds,
            retry_attempts=settings.sync_retry_attempts,
            retry_delay=settings.sync_retry_delay_seconds,
            offline_mode=settings.sync_offline_mode,
        )


class SyncManager:
    """Keeps the remote copy of time sessions current without blocking callers.

    Sessions that could not be written are held in a queue that is mirrored to
    local storage, so they survive restarts. Every write is an upsert keyed by
    session id, which makes repeated flushes of the same session harmless.

    The background timer runs while a session is open (pushing its live
    duration) or while the queue still holds unsynced sessions.
    """

    def __init__(
        self,
        remote: RemoteStore,
        storage: LocalStorage,
        *,
        clock: Clock | None = None,
        options: SyncOptions | None = None,
        timeout: float = 10.0,
    ):
        self._remote = remote
        self._storage = storage
        self._clock = clock or Clock()
        self._options = options or SyncOptions()
        self._timeout = timeout

        self._queue: list[TimeSession] = []
        self._tracked: Optional[TimeSession] = None
        self._online = not self._options.offline_mode
        self._paused = False
        self._initialized = False

        self._state = SyncState.SYNCED if self._online else SyncState.OFFLINE
        self._last_synced_at: Optional["datetime.datetime"] = None
        self._last_error: Optional[str] = None
        self._listeners: list[StatusListener] = []

        self._timer_task: Optional[asyncio.Task[None]] = None
        self._flush_task: Optional[asyncio.Task[bool]] = None
        self._background: set[asyncio.Task[Any]] = set()
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def options(self) -> SyncOptions:
        return self._options

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            last_synced_at=self._last_synced_at,
            last_error=self._last_error,
            pending=len(self._queue),
        )

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def last_sync_time(self) -> Optional["datetime.datetime"]:
        return self._last_synced_at

    @property
    def pending(self) -> list[TimeSession]:
        """Queued sessions not yet confirmed by the remote store."""
        return list(self._queue)

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to status changes; returns a function that unsubscribes."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _publish(self) -> None:
        status = self.status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as exc:
                logger.error(f"Sync status listener failed: {exc}", exc_info=True)

    def _set_state(self, state: SyncState, error: Optional[str] = None) -> None:
        self._state = state
        self._last_error = error
        self._publish()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, options: SyncOptions | None = None) -> None:
        """Apply ``options``, reload the durable queue and flush it if possible."""

        if self._initialized:
            self._cancel_timer()
        if options is not None:
            self._options = options

        self._online = not self._options.offline_mode
        self._queue = self._load_queue()
        self._initialized = True
        self._set_state(SyncState.SYNCED if self._online else SyncState.OFFLINE)
        logger.info(
            f"Sync manager ready (auto={self._options.auto_sync}, "
            f"interval={self._options.sync_interval:g}s, queued={len(self._queue)})"
        )

        if self._queue and self._online and self._options.auto_sync:
            await self.sync_now()
        self._ensure_timer()

    async def shutdown(self) -> None:
        """Stop the timer and any in-flight work; the queue stays on disk."""
        self._cancel_timer()
        pending = list(self._background)
        if self._flush_task is not None and not self._flush_task.done():
            pending.append(self._flush_task)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()
        self._flush_task = None
        self._tracked = None
        self._persist_queue()

    def _load_queue(self) -> list[TimeSession]:
        raw = self._storage.get(PENDING_SESSIONS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Discarding malformed pending-session queue in local storage")
            self._storage.remove(PENDING_SESSIONS_KEY)
            return []

        queue: list[TimeSession] = []
        for item in raw:
            try:
                session = TimeSession.from_row(item)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning(f"Skipping unreadable queued session: {exc}")
                continue
            queue = [queued for queued in queue if queued.id != session.id]
            queue.append(session)
        return queue

    def _persist_queue(self) -> None:
        try:
            if self._queue:
                self._storage.set(
                    PENDING_SESSIONS_KEY, [session.to_row() for session in self._queue]
                )
            else:
                self._storage.remove(PENDING_SESSIONS_KEY)
        except OSError as exc:
            logger.error(f"Could not persist pending sessions, kept in memory only: {exc}")

    # ------------------------------------------------------------------
    # Open session tracking
    # ------------------------------------------------------------------

    def track(self, session: TimeSession) -> None:
        """Start pushing the live duration of ``session`` on every tick."""
        self._tracked = session
        self._ensure_timer()

    async def untrack(self) -> None:
        """Stop pushing the open session and wait out any write in progress.

        After this returns no snapshot of the previously open session can reach
        the remote store, so the caller's closing write is the last one.
        """
        self._tracked = None
        self._cancel_timer()
        async with self._write_lock:
            pass
        self._ensure_timer()

    # ------------------------------------------------------------------
    # Queueing and flushing
    # ------------------------------------------------------------------

    def _merge(self, session: TimeSession) -> None:
        self._queue = [queued for queued in self._queue if queued.id != session.id]
        self._queue.append(session)

    def enqueue(self, session: TimeSession) -> None:
        """Queue ``session`` durably and flush in the background when online."""
        self._merge(session)
        self._persist_queue()
        logger.info(f"Queued session {session.id} for sync ({len(self._queue)} pending)")
        self._publish()
        if self._online and not self._paused:
            self._spawn(self._flush_after_current())
        self._ensure_timer()

    async def sync_session(self, session: TimeSession) -> bool:
        """Queue ``session`` and, when online, flush the queue right away."""
        self._merge(session)
        self._persist_queue()
        self._publish()
        if not self._online:
            logger.info(f"Offline; session {session.id} kept in the sync queue")
            self._ensure_timer()
            return False
        return await self.sync_now()

    async def bulk_sync_sessions(self, sessions: Iterable[TimeSession] = ()) -> int:
        """Upsert ``sessions`` together with the queue in a single call.

        Returns the number of rows written. Raises ``SyncError`` if the write
        fails; the sessions then stay queued.
        """

        for session in sessions:
            self._merge(session)
        self._persist_queue()
        if not self._online:
            self._publish()
            raise SyncError("Offline; sessions stay queued", offline=True)

        try:
            written = await self._push()
        except SyncError as exc:
            self._record_failure(exc)
            raise
        self._mark_synced(written)
        return written

    async def sync_now(self) -> bool:
        """Flush immediately, joining a flush that is already running."""
        if not self._online:
            logger.info("Sync requested while offline; sessions stay queued")
            return False
        return await asyncio.shield(self._start_flush())

    def _start_flush(self) -> "asyncio.Task[bool]":
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._flush())
        return self._flush_task

    async def _flush_after_current(self) -> None:
        current = self._flush_task
        if current is not None and not current.done():
            await asyncio.wait({current})
        if self._queue and self._online and not self._paused:
            await self._start_flush()

    async def _flush(self) -> bool:
        """Push the queue, retrying with a fixed delay; never raises."""

        attempts = 1 + max(0, self._options.retry_attempts)
        failure: Optional[SyncError] = None
        for attempt in range(1, attempts + 1):
            self._set_state(SyncState.SYNCING, self._last_error)
            try:
                written = await self._push()
            except SyncError as exc:
                failure = exc
                if exc.offline:
                    self._go_offline(str(exc))
                    return False
                if attempt < attempts:
                    logger.warning(
                        f"Sync attempt {attempt}/{attempts} failed, retrying in "
                        f"{self._options.retry_delay:g}s: {exc}"
                    )
                    await self._clock.sleep(self._options.retry_delay)
                continue
            self._mark_synced(written)
            return True

        logger.error(
            f"Sync failed after {attempts} attempts, {len(self._queue)} sessions kept queued"
        )
        self._set_state(SyncState.ERROR, str(failure) if failure else "Sync failed")
        self._ensure_timer()
        return False

    async def _push(self) -> int:
        """Upsert the queue plus a live snapshot of the open session.

        Only the queue entries that were actually sent are removed afterwards,
        so a newer version queued during the call is kept.
        """

        async with self._write_lock:
            sent = list(self._queue)
            batch = list(sent)
            tracked = self._tracked
            if tracked is not None and all(item.id != tracked.id for item in sent):
                batch.append(tracked.snapshot(self._clock.now()))
            if not batch:
                return 0

            try:
                await call_remote(
                    self._remote.upsert_sessions([item.to_row() for item in batch]),
                    action=f"Syncing {len(batch)} sessions",
                    timeout=self._timeout,
                )
            except RemoteWriteError as exc:
                raise SyncError(str(exc), offline=exc.offline) from exc

        if sent:
            self._queue = [
                item for item in self._queue if not any(item is done for done in sent)
            ]
            self._persist_queue()
        return len(batch)

    def _mark_synced(self, written: int) -> None:
        self._last_synced_at = self._clock.now()
        if written:
            logger.debug(f"Synced {written} sessions")
        self._set_state(SyncState.SYNCED)

    def _record_failure(self, exc: SyncError) -> None:
        if exc.offline:
            self._go_offline(str(exc))
        else:
            self._set_state(SyncState.ERROR, str(exc))
            self._ensure_timer()

    # ------------------------------------------------------------------
    # Connectivity and controls
    # ------------------------------------------------------------------

    def _go_offline(self, reason: str) -> None:
        if self._online:
            logger.warning(f"📴 Sync offline: {reason}")
        self._online = False
        self._set_state(SyncState.OFFLINE, reason)
        self._ensure_timer()

    def set_online(self, online: bool) -> None:
        """Connectivity observer entry point."""

        if online and self._options.offline_mode:
            logger.debug("Ignoring connectivity change, offline mode is forced")
            return
        if online == self._online:
            return
        if not online:
            self._go_offline("Connectivity lost")
            return

        self._restore_online()
        if self._queue and not self._paused:
            self._spawn(self._flush_after_current())

    def _restore_online(self) -> None:
        self._online = True
        logger.info(f"🌐 Connectivity restored, {len(self._queue)} sessions queued")
        self._set_state(SyncState.SYNCED)

    def pause_sync(self) -> None:
        """Suspend background syncing; queued sessions are kept."""
        self._paused = True
        self._cancel_timer()
        logger.info("Background sync paused")

    def resume_sync(self) -> None:
        self._paused = False
        logger.info("Background sync resumed")
        if self._queue and self._online:
            self._spawn(self._flush_after_current())
        self._ensure_timer()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _ensure_timer(self) -> None:
        if not self._initialized or self._paused or not self._options.auto_sync:
            return
        if self._options.offline_mode:
            return
        if self._tracked is None and not self._queue:
            return
        if self._timer_task is not None and not self._timer_task.done():
            return
        self._timer_task = asyncio.create_task(self._run_timer())

    def _cancel_timer(self) -> None:
        timer = self._timer_task
        self._timer_task = None
        if timer is not None and not timer.done():
            timer.cancel()

    async def _run_timer(self) -> None:
        try:
            while self._tracked is not None or self._queue:
                await self._clock.sleep(self._options.sync_interval)
                await self._tick()
            logger.debug("Sync timer idle, nothing left to push")
        except asyncio.CancelledError:
            logger.debug("Sync timer cancelled")
            raise
        finally:
            if self._timer_task is asyncio.current_task():
                self._timer_task = None

    async def _tick(self) -> None:
        if self._paused:
            return
        if self._flush_task is not None and not self._flush_task.done():
            logger.debug("Sync tick skipped, a flush is still in flight")
            return
        if not self._online:
            if self._options.offline_mode or not await self._probe():
                return
            self._restore_online()
        await asyncio.shield(self._start_flush())

    async def _probe(self) -> bool:
        try:
            await asyncio.wait_for(self._remote.ping(), timeout=self._timeout)
        except (asyncio.TimeoutError, RemoteStoreError) as exc:
            logger.debug(f"Remote still unreachable: {exc}")
            return False
        return True

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


__all__ = ["PENDING_SESSIONS_KEY", "SyncManager", "SyncOptions", "StatusListener"]
