"""Contract for the remote persistence backend and the call guard around it."""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Awaitable, Optional, Protocol, TypeVar

from ..errors import RemoteWriteError

logger = logging.getLogger(__name__)

Row = dict[str, Any]
T = TypeVar("T")


class RemoteStoreError(Exception):
    """Wrap storage or API failures reported by a remote backend."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class RemoteUnavailableError(RemoteStoreError):
    """The backend could not be reached at all (transport failure)."""

    def __init__(self, detail: Any):
        super().__init__(503, detail)


class RemoteStore(Protocol):
    """Row-level persistence for tasks, subtasks and time sessions.

    Rows are plain JSON-compatible dictionaries using the snake_case column
    names of the hosted schema. Implementations raise ``RemoteStoreError``
    (or ``RemoteUnavailableError``) instead of transport-specific exceptions.
    """

    async def get_user_id(self) -> Optional[str]: ...

    async def ping(self) -> bool: ...

    async def fetch_tasks(self, user_id: str) -> list[Row]: ...

    async def insert_task(self, row: Row) -> Row: ...

    async def update_task(self, task_id: str, fields: Row) -> Optional[Row]: ...

    async def delete_task(self, task_id: str) -> bool: ...

    async def insert_subtasks(self, rows: list[Row]) -> list[Row]: ...

    async def update_subtasks(
        self, task_id: str, fields: Row, subtask_id: Optional[str] = None
    ) -> int: ...

    async def delete_subtask(self, task_id: str, subtask_id: str) -> bool: ...

    async def insert_session(self, row: Row) -> Row: ...

    async def update_session(self, session_id: str, fields: Row) -> Optional[Row]: ...

    async def upsert_sessions(self, rows: list[Row]) -> list[Row]: ...

    async def fetch_sessions(
        self,
        user_id: str,
        *,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        task_id: Optional[str] = None,
    ) -> list[Row]: ...

    async def close(self) -> None: ...


async def call_remote(awaitable: Awaitable[T], *, action: str, timeout: float) -> T:
    """Await a remote call under ``timeout`` and translate its failures.

    Timeouts and transport failures become ``RemoteWriteError(offline=True)`` so
    callers can treat them as retryable connectivity problems.
    """

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error(f"{action} timed out after {timeout:g}s")
        raise RemoteWriteError(
            f"{action} timed out after {timeout:g}s", offline=True
        ) from exc
    except RemoteUnavailableError as exc:
        logger.error(f"{action} failed, remote unreachable: {exc}")
        raise RemoteWriteError(f"{action} failed: {exc}", offline=True) from exc
    except RemoteStoreError as exc:
        logger.error(f"{action} failed ({exc.status_code}): {exc}")
        raise RemoteWriteError(f"{action} failed: {exc}") from exc


__all__ = [
    "RemoteStore",
    "RemoteStoreError",
    "RemoteUnavailableError",
    "Row",
    "call_remote",
]
