"""Task domain package: models and the remote-backed task store."""

from .models import EstimateUnit, Priority, Subtask, Task, TaskStatus, TimeEstimate
from .store import HARD_DELETE_GRACE_SECONDS, TaskStore

__all__ = [
    "EstimateUnit",
    "HARD_DELETE_GRACE_SECONDS",
    "Priority",
    "Subtask",
    "Task",
    "TaskStatus",
    "TaskStore",
    "TimeEstimate",
]
