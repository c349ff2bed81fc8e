"""Remote persistence backends for tasks and time sessions."""

from .base import (
    RemoteStore,
    RemoteStoreError,
    RemoteUnavailableError,
    Row,
    call_remote,
)
from .rest import RestRemoteStore
from .sqlite import SQLiteRemoteStore

__all__ = [
    "RemoteStore",
    "RemoteStoreError",
    "RemoteUnavailableError",
    "RestRemoteStore",
    "Row",
    "SQLiteRemoteStore",
    "call_remote",
]
