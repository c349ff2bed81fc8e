"""Focus mode bookkeeping, independent from time tracking."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from ..clock import Clock, elapsed_seconds
from ..errors import TaskflowError
from ..schemas.focus import FocusSettings, FocusSettingsUpdate
from ..storage import LocalStorage
from .models import FocusSession
from .sessions import TimeSessionStore

logger = logging.getLogger(__name__)

FOCUS_STATE_KEY = "focus-store"


class FocusTracker:
    """Tracks focus sessions and interruptions for a single task at a time.

    Exiting focus never stops time tracking; entering may start it when the
    ``auto_start_timer`` setting is on.
    """

    def __init__(
        self,
        sessions: TimeSessionStore,
        storage: LocalStorage,
        *,
        clock: Clock | None = None,
    ):
        self._sessions = sessions
        self._storage = storage
        self._clock = clock or Clock()
        self._settings = FocusSettings()
        self._current: Optional[FocusSession] = None
        self._history: list[FocusSession] = []
        self.restore()

    @property
    def settings(self) -> FocusSettings:
        return self._settings

    @property
    def current(self) -> Optional[FocusSession]:
        return self._current

    @property
    def history(self) -> list[FocusSession]:
        return list(self._history)

    async def enter(self, task_id: str) -> FocusSession:
        """Open a focus session for ``task_id``."""

        current = self._current
        if current is not None and current.task_id == task_id:
            return current
        if current is not None:
            self._close(current)

        session = FocusSession(task_id=task_id, start_time=self._clock.now())
        self._current = session
        self._save()
        logger.info(f"🎯 Focus started on task {task_id}")

        open_session = self._sessions.current_session
        if self._settings.auto_start_timer and (
            open_session is None or open_session.task_id != task_id
        ):
            try:
                await self._sessions.start_tracking(task_id)
            except TaskflowError as exc:
                logger.warning(f"Focus on task {task_id} without timer: {exc}")
        return session

    def exit(self) -> Optional[FocusSession]:
        """Close the open focus session; time tracking keeps running."""
        current = self._current
        if current is None:
            return None
        closed = self._close(current)
        self._save()
        return closed

    def _close(self, session: FocusSession) -> FocusSession:
        end_time = self._clock.now()
        session.end_time = end_time
        session.duration = elapsed_seconds(session.start_time, end_time)
        self._history.append(session)
        self._current = None
        logger.info(
            f"Focus ended on task {session.task_id} after {session.duration}s "
            f"({session.interruptions} interruptions)"
        )
        return session

    def add_interruption(self) -> Optional[FocusSession]:
        current = self._current
        if current is None:
            return None
        current.interruptions += 1
        self._save()
        return current

    def update_settings(
        self, update: FocusSettingsUpdate | Mapping[str, Any]
    ) -> FocusSettings:
        """Merge a partial settings update."""
        if not isinstance(update, FocusSettingsUpdate):
            update = FocusSettingsUpdate.model_validate(update)
        self._settings = self._settings.model_copy(
            update=update.model_dump(exclude_none=True)
        )
        self._save()
        return self._settings

    def _save(self) -> None:
        state = {
            "settings": self._settings.model_dump(),
            "current": self._current.to_dict() if self._current else None,
            "sessions": [session.to_dict() for session in self._history],
        }
        try:
            self._storage.set(FOCUS_STATE_KEY, state)
        except OSError as exc:
            logger.error(f"Could not persist focus state: {exc}")

    def restore(self) -> None:
        """Load settings and focus history saved by a previous run."""

        state = self._storage.get(FOCUS_STATE_KEY)
        if not isinstance(state, dict):
            return

        try:
            self._settings = FocusSettings.model_validate(state.get("settings") or {})
        except ValidationError as exc:
            logger.warning(f"Invalid focus settings, using defaults: {exc}")
            self._settings = FocusSettings()

        history: list[FocusSession] = []
        for item in state.get("sessions") or []:
            try:
                history.append(FocusSession.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning(f"Skipping unreadable focus session: {exc}")
        self._history = history

        current = state.get("current")
        self._current = None
        if current:
            try:
                self._current = FocusSession.from_dict(current)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning(f"Discarding unreadable open focus session: {exc}")


__all__ = ["FOCUS_STATE_KEY", "FocusTracker"]
