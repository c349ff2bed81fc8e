"""Time tracking, focus mode and session sync."""

from .focus import FOCUS_STATE_KEY, FocusTracker
from .models import FocusSession, SyncState, SyncStatus, TimeSession, TrackingState
from .sessions import ACTIVE_SESSION_KEY, ACTIVE_TASK_KEY, TimeSessionStore
from .sync import PENDING_SESSIONS_KEY, SyncManager, SyncOptions

__all__ = [
    "ACTIVE_SESSION_KEY",
    "ACTIVE_TASK_KEY",
    "FOCUS_STATE_KEY",
    "FocusSession",
    "FocusTracker",
    "PENDING_SESSIONS_KEY",
    "SyncManager",
    "SyncOptions",
    "SyncState",
    "SyncStatus",
    "TimeSession",
    "TimeSessionStore",
    "TrackingState",
]
