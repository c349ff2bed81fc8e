"""Session records for time tracking, focus mode and sync status."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional

from ..clock import elapsed_seconds
from ..utils.datetime_utils import parse_datetime, to_iso


class TrackingState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"


class SyncState(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass(slots=True)
class TimeSession:
    """A contiguous interval of tracked work on one task.

    ``duration`` is authoritative once ``end_time`` is set; while the session is
    open it must be recomputed from ``start_time`` (see ``elapsed``).
    """

    id: str
    task_id: str
    user_id: str
    start_time: datetime.datetime
    end_time: Optional[datetime.datetime] = None
    duration: int = 0
    note: Optional[str] = None
    session_type: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def elapsed(self, now: datetime.datetime) -> int:
        """Return tracked seconds, computing live time for open sessions."""

        if self.end_time is None:
            return elapsed_seconds(self.start_time, now)
        return self.duration

    def closed_at(self, end_time: datetime.datetime) -> "TimeSession":
        return replace(
            self,
            end_time=end_time,
            duration=elapsed_seconds(self.start_time, end_time),
        )

    def snapshot(self, now: datetime.datetime) -> "TimeSession":
        """Copy of an open session with its duration brought up to ``now``."""

        return replace(self, duration=self.elapsed(now))

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "duration": self.duration,
            "note": self.note,
            "session_type": self.session_type,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TimeSession":
        start_time = parse_datetime(row.get("start_time"))
        if start_time is None:
            raise ValueError(f"Session row {row.get('id')!r} has no start_time")
        return cls(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            user_id=str(row.get("user_id") or ""),
            start_time=start_time,
            end_time=parse_datetime(row.get("end_time")),
            duration=int(row.get("duration") or 0),
            note=row.get("note"),
            session_type=row.get("session_type"),
        )


@dataclass(slots=True)
class FocusSession:
    """One focus-mode excursion and the interruptions logged during it."""

    task_id: str
    start_time: datetime.datetime
    end_time: Optional[datetime.datetime] = None
    duration: int = 0
    interruptions: int = 0

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "duration": self.duration,
            "interruptions": self.interruptions,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FocusSession":
        start_time = parse_datetime(data.get("start_time"))
        if start_time is None:
            raise ValueError("Focus session has no start_time")
        return cls(
            task_id=str(data["task_id"]),
            start_time=start_time,
            end_time=parse_datetime(data.get("end_time")),
            duration=int(data.get("duration") or 0),
            interruptions=int(data.get("interruptions") or 0),
        )


@dataclass(slots=True)
class SyncStatus:
    """Snapshot of the sync manager state for display."""

    state: SyncState = SyncState.SYNCED
    last_synced_at: Optional[datetime.datetime] = None
    last_error: Optional[str] = None
    pending: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "last_synced_at": to_iso(self.last_synced_at),
            "last_error": self.last_error,
            "pending": self.pending,
        }


__all__ = [
    "FocusSession",
    "SyncState",
    "SyncStatus",
    "TimeSession",
    "TrackingState",
]
