"""Time tracking state machine: at most one open session at a time."""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import replace
from typing import Awaitable, Optional, TypeVar

from ..clock import Clock
from ..errors import NotAuthenticatedError, RemoteWriteError, TaskValidationError
from ..remote.base import RemoteStore, call_remote
from ..storage import LocalStorage
from ..utils.datetime_utils import day_bounds, to_iso
from .models import TimeSession, TrackingState
from .sync import SyncManager

logger = logging.getLogger(__name__)

ACTIVE_SESSION_KEY = "activeSession"
ACTIVE_TASK_KEY = "activeTaskId"

T = TypeVar("T")


class TimeSessionStore:
    """Owns the open-session pointer, the active task and closed-session history.

    Transitions are serialized with a lock so a stop can never interleave with
    the start that follows it. The open session only becomes current after the
    remote row exists; closing never loses time, because a failed remote
    update is handed to the sync queue instead.

    ``active_task_id`` is tracked separately from the open session: pausing
    keeps it (the task stays resumable), stopping clears it.
    """

    def __init__(
        self,
        remote: RemoteStore,
        sync: SyncManager,
        storage: LocalStorage,
        *,
        clock: Clock | None = None,
        timeout: float = 10.0,
    ):
        self._remote = remote
        self._sync = sync
        self._storage = storage
        self._clock = clock or Clock()
        self._timeout = timeout
        self._current: Optional[TimeSession] = None
        self._active_task_id: Optional[str] = None
        self._history: list[TimeSession] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TrackingState:
        return TrackingState.IDLE if self._current is None else TrackingState.TRACKING

    @property
    def is_tracking(self) -> bool:
        return self._current is not None

    @property
    def current_session(self) -> Optional[TimeSession]:
        return self._current

    @property
    def active_task_id(self) -> Optional[str]:
        return self._active_task_id

    @property
    def sessions(self) -> list[TimeSession]:
        """Closed sessions, oldest first."""
        return list(self._history)

    async def _call(self, awaitable: Awaitable[T], action: str) -> T:
        return await call_remote(awaitable, action=action, timeout=self._timeout)

    async def _require_user(self, action: str) -> str:
        user_id = await self._call(self._remote.get_user_id(), "Looking up user")
        if not user_id:
            logger.warning(f"Refusing to {action}: no authenticated user")
            raise NotAuthenticatedError(f"User must be authenticated to {action}")
        return user_id

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_tracking(self, task_id: str) -> TimeSession:
        """Open a session for ``task_id``, closing any other open session first.

        Starting the task that is already being tracked returns the open
        session unchanged.
        """

        async with self._lock:
            current = self._current
            if current is not None and current.task_id == task_id:
                logger.debug(f"Already tracking task {task_id}, keeping session {current.id}")
                return current

            user_id = await self._require_user("start tracking")
            if current is not None:
                await self._close_current(clear_active=True)

            row = {
                "task_id": task_id,
                "user_id": user_id,
                "start_time": to_iso(self._clock.now()),
                "end_time": None,
                "duration": 0,
            }
            stored = await self._call(
                self._remote.insert_session(row), f"Starting session for task {task_id}"
            )
            session = TimeSession.from_row({**row, **stored})

            self._current = session
            self._active_task_id = task_id
            self._persist_active()
            self._sync.track(session)
            logger.info(f"⏱️ Tracking started for task {task_id} (session {session.id})")
            return session

    async def pause_tracking(self) -> Optional[TimeSession]:
        """Close the open session but keep its task active."""
        async with self._lock:
            if self._current is None:
                logger.debug("Pause requested while idle")
                return None
            return await self._close_current(clear_active=False)

    async def stop_tracking(self) -> Optional[TimeSession]:
        """Close the open session and clear the active task.

        When idle this only clears the active task left behind by a pause.
        """
        async with self._lock:
            if self._current is None:
                if self._active_task_id is not None:
                    self._active_task_id = None
                    self._persist_active()
                return None
            return await self._close_current(clear_active=True)

    def clear_active_task(self) -> None:
        """Forget the active task without touching the open session."""
        self._active_task_id = None
        self._persist_active()

    async def _close_current(self, *, clear_active: bool) -> TimeSession:
        session = self._current
        assert session is not None
        end_time = self._clock.now()

        await self._sync.untrack()
        closed = session.closed_at(end_time)
        try:
            stored = await self._call(
                self._remote.update_session(
                    closed.id,
                    {"end_time": to_iso(closed.end_time), "duration": closed.duration},
                ),
                f"Closing session {closed.id}",
            )
            if stored is None:
                logger.warning(f"Session {closed.id} missing remotely, queued for upsert")
                self._sync.enqueue(closed)
        except RemoteWriteError as exc:
            logger.warning(f"Session {closed.id} closed locally, remote update queued: {exc}")
            self._sync.enqueue(closed)
        except BaseException:
            # Session is still open; keep its live duration syncing.
            self._sync.track(session)
            raise

        self._current = None
        if clear_active:
            self._active_task_id = None
        self._remember(closed)
        self._persist_active()
        logger.info(
            f"Session {closed.id} closed for task {closed.task_id} ({closed.duration}s)"
        )
        return closed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task_time(self, task_id: str) -> int:
        """Total tracked seconds for ``task_id``, including the live open session."""

        total = sum(
            session.duration for session in self._history if session.task_id == task_id
        )
        current = self._current
        if current is not None and current.task_id == task_id:
            total += current.elapsed(self._clock.now())
        return total

    def _remember(self, session: TimeSession) -> None:
        self._history = [item for item in self._history if item.id != session.id]
        self._history.append(session)
        self._history.sort(key=lambda item: item.start_time)

    async def load_sessions(
        self,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
    ) -> list[TimeSession]:
        """Fetch closed sessions started within ``[start, end)`` into history.

        Sessions already known locally keep their local version.
        """

        user_id = await self._require_user("load sessions")
        rows = await self._call(
            self._remote.fetch_sessions(user_id, start=start, end=end),
            "Loading sessions",
        )

        known = {session.id for session in self._history}
        open_id = self._current.id if self._current is not None else None
        loaded: list[TimeSession] = []
        for row in rows:
            try:
                session = TimeSession.from_row(row)
            except (KeyError, ValueError) as exc:
                logger.warning(f"Skipping malformed session row {row.get('id')!r}: {exc}")
                continue
            if session.is_open or session.id == open_id:
                continue
            loaded.append(session)
            if session.id not in known:
                self._history.append(session)
        self._history.sort(key=lambda item: item.start_time)
        logger.info(f"Loaded {len(loaded)} sessions")
        return loaded

    async def load_today(self, tz: datetime.tzinfo | None = None) -> list[TimeSession]:
        start, end = day_bounds(self._clock.now(), tz)
        return await self.load_sessions(start, end)

    async def annotate_session(
        self,
        session_id: str,
        note: Optional[str] = None,
        session_type: Optional[str] = None,
    ) -> Optional[TimeSession]:
        """Attach a note and/or a type label to a closed session."""

        session = next((item for item in self._history if item.id == session_id), None)
        if session is None:
            logger.warning(f"Cannot annotate: session {session_id} not found")
            return None

        fields = {}
        if note is not None:
            fields["note"] = note
        if session_type is not None:
            fields["session_type"] = session_type
        if not fields:
            raise TaskValidationError("Provide a note or a session type")

        updated = replace(session, **fields)
        if any(item.id == session_id for item in self._sync.pending):
            # Not yet written remotely; the queued upsert carries the annotation.
            self._sync.enqueue(updated)
        else:
            await self._require_user("annotate sessions")
            stored = await self._call(
                self._remote.update_session(session_id, fields),
                f"Annotating session {session_id}",
            )
            if stored is None:
                raise RemoteWriteError(f"Session {session_id} no longer exists remotely")

        self._remember(updated)
        return updated

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist_active(self) -> None:
        try:
            if self._current is not None:
                self._storage.set(ACTIVE_SESSION_KEY, self._current.to_row())
            else:
                self._storage.remove(ACTIVE_SESSION_KEY)
            if self._active_task_id is not None:
                self._storage.set(ACTIVE_TASK_KEY, self._active_task_id)
            else:
                self._storage.remove(ACTIVE_TASK_KEY)
        except OSError as exc:
            logger.error(f"Could not persist tracking state: {exc}")

    def restore(self) -> Optional[TimeSession]:
        """Rehydrate an interrupted open session and re-arm background sync."""

        active_task = self._storage.get(ACTIVE_TASK_KEY)
        self._active_task_id = active_task if isinstance(active_task, str) else None

        raw = self._storage.get(ACTIVE_SESSION_KEY)
        if raw is None:
            return None
        try:
            session = TimeSession.from_row(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(f"Discarding unreadable active session: {exc}")
            self._storage.remove(ACTIVE_SESSION_KEY)
            return None

        if not session.is_open:
            self._storage.remove(ACTIVE_SESSION_KEY)
            self._remember(session)
            return None

        self._current = session
        self._active_task_id = self._active_task_id or session.task_id
        self._sync.track(session)
        logger.info(
            f"Resumed open session {session.id} for task {session.task_id} "
            f"(started {to_iso(session.start_time)})"
        )
        return session

    async def shutdown(self) -> None:
        """Stop pushing the open session; it stays open and is resumed on restart."""
        await self._sync.untrack()


__all__ = ["ACTIVE_SESSION_KEY", "ACTIVE_TASK_KEY", "TimeSessionStore"]
