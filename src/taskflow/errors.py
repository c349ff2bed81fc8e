"""Exception taxonomy shared by the task, tracking and sync services."""

from __future__ import annotations


class TaskflowError(RuntimeError):
    """Base class for failures surfaced by the taskflow services."""


class NotAuthenticatedError(TaskflowError):
    """Raised when no user identity is available for a mutating operation."""


class RemoteWriteError(TaskflowError):
    """Raised when the remote store rejects or cannot complete a call."""

    def __init__(self, message: str, *, offline: bool = False):
        super().__init__(message)
        self.offline = offline


class NotFoundError(TaskflowError):
    """Raised when an id is not present in the local cache."""


class SyncError(TaskflowError):
    """Raised when a batch of queued sessions could not be flushed."""

    def __init__(self, message: str, *, offline: bool = False):
        super().__init__(message)
        self.offline = offline


class TaskValidationError(TaskflowError):
    """Raised when input is rejected before any remote call is attempted."""


__all__ = [
    "TaskflowError",
    "NotAuthenticatedError",
    "RemoteWriteError",
    "NotFoundError",
    "SyncError",
    "TaskValidationError",
]
