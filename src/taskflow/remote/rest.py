"""Remote store speaking the Supabase/PostgREST HTTP dialect."""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Optional

import httpx

from ..utils.datetime_utils import to_iso
from .base import RemoteStoreError, RemoteUnavailableError, Row

logger = logging.getLogger(__name__)


class RestRemoteStore:
    """Client for a hosted backend exposing ``/auth/v1`` and ``/rest/v1``.

    The anon key identifies the project; the access token identifies the user
    and is what row-level security filters on.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )

    def set_access_token(self, token: Optional[str]) -> None:
        """Swap the user session token (``None`` signs out)."""
        self._access_token = token

    @property
    def _headers(self) -> dict[str, str]:
        token = self._access_token or self._api_key
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @staticmethod
    def _extract_error_detail(response: httpx.Response) -> Any:
        try:
            payload = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(payload, dict):
            return payload.get("message") or payload.get("msg") or payload
        return payload

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json_body: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = self._headers
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.TransportError as exc:
            raise RemoteUnavailableError(str(exc)) from exc

        if response.status_code >= 400:
            raise RemoteStoreError(
                response.status_code, self._extract_error_detail(response)
            )
        if not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise RemoteStoreError(502, f"Invalid JSON from remote: {exc}") from exc

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_user_id(self) -> Optional[str]:
        if not self._access_token:
            return None
        try:
            payload = await self._request("GET", "/auth/v1/user")
        except RemoteStoreError as exc:
            if exc.status_code in (401, 403):
                logger.warning(f"Access token rejected: {exc}")
                return None
            raise
        if not isinstance(payload, dict):
            return None
        return payload.get("id")

    async def ping(self) -> bool:
        await self._request("GET", "/auth/v1/health")
        return True

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def fetch_tasks(self, user_id: str) -> list[Row]:
        rows = await self._request(
            "GET",
            "/rest/v1/tasks",
            params=[
                ("select", "*,subtasks(*)"),
                ("user_id", f"eq.{user_id}"),
                ("deleted_at", "is.null"),
                ("order", "created_at.desc"),
                ("subtasks.order", "position.asc"),
            ],
        )
        return list(rows or [])

    async def insert_task(self, row: Row) -> Row:
        rows = await self._request(
            "POST", "/rest/v1/tasks", json_body=row, prefer="return=representation"
        )
        if not rows:
            raise RemoteStoreError(502, "Task insert returned no row")
        return rows[0]

    async def update_task(self, task_id: str, fields: Row) -> Optional[Row]:
        rows = await self._request(
            "PATCH",
            "/rest/v1/tasks",
            params={"id": f"eq.{task_id}"},
            json_body=fields,
            prefer="return=representation",
        )
        return rows[0] if rows else None

    async def delete_task(self, task_id: str) -> bool:
        rows = await self._request(
            "DELETE",
            "/rest/v1/tasks",
            params={"id": f"eq.{task_id}"},
            prefer="return=representation",
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    async def insert_subtasks(self, rows: list[Row]) -> list[Row]:
        if not rows:
            return []
        stored = await self._request(
            "POST", "/rest/v1/subtasks", json_body=rows, prefer="return=representation"
        )
        return list(stored or [])

    async def update_subtasks(
        self, task_id: str, fields: Row, subtask_id: Optional[str] = None
    ) -> int:
        params = {"task_id": f"eq.{task_id}"}
        if subtask_id is not None:
            params["id"] = f"eq.{subtask_id}"
        rows = await self._request(
            "PATCH",
            "/rest/v1/subtasks",
            params=params,
            json_body=fields,
            prefer="return=representation",
        )
        return len(rows or [])

    async def delete_subtask(self, task_id: str, subtask_id: str) -> bool:
        rows = await self._request(
            "DELETE",
            "/rest/v1/subtasks",
            params={"task_id": f"eq.{task_id}", "id": f"eq.{subtask_id}"},
            prefer="return=representation",
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Time sessions
    # ------------------------------------------------------------------

    async def insert_session(self, row: Row) -> Row:
        body = {key: value for key, value in row.items() if value is not None}
        rows = await self._request(
            "POST",
            "/rest/v1/time_sessions",
            json_body=body,
            prefer="return=representation",
        )
        if not rows:
            raise RemoteStoreError(502, "Session insert returned no row")
        return rows[0]

    async def update_session(self, session_id: str, fields: Row) -> Optional[Row]:
        rows = await self._request(
            "PATCH",
            "/rest/v1/time_sessions",
            params={"id": f"eq.{session_id}"},
            json_body=fields,
            prefer="return=representation",
        )
        return rows[0] if rows else None

    async def upsert_sessions(self, rows: list[Row]) -> list[Row]:
        if not rows:
            return []
        now = to_iso(datetime.datetime.now(datetime.timezone.utc))
        stored = await self._request(
            "POST",
            "/rest/v1/time_sessions",
            params={"on_conflict": "id"},
            json_body=[{**row, "updated_at": now} for row in rows],
            prefer="resolution=merge-duplicates,return=representation",
        )
        return list(stored or [])

    async def fetch_sessions(
        self,
        user_id: str,
        *,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        task_id: Optional[str] = None,
    ) -> list[Row]:
        params: list[tuple[str, str]] = [
            ("select", "*"),
            ("user_id", f"eq.{user_id}"),
            ("order", "start_time.asc"),
        ]
        if start is not None:
            params.append(("start_time", f"gte.{to_iso(start)}"))
        if end is not None:
            params.append(("start_time", f"lt.{to_iso(end)}"))
        if task_id is not None:
            params.append(("task_id", f"eq.{task_id}"))
        rows = await self._request("GET", "/rest/v1/time_sessions", params=params)
        return list(rows or [])


__all__ = ["RestRemoteStore"]
