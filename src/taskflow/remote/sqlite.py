"""SQLite-backed remote store for self-hosted, single-user deployments."""

from __future__ import annotations

import datetime
import functools
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import aiosqlite

from ..utils.datetime_utils import parse_datetime, to_iso
from .base import RemoteStoreError, RemoteUnavailableError, Row

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TASK_COLUMNS = (
    "id",
    "user_id",
    "title",
    "description",
    "category",
    "tags",
    "priority",
    "status",
    "progress",
    "due_date",
    "time_estimate",
    "time_spent",
    "dependencies",
    "created_at",
    "updated_at",
    "completed_at",
    "deleted_at",
)
_SUBTASK_COLUMNS = (
    "id",
    "task_id",
    "title",
    "description",
    "completed",
    "time_estimate",
    "position",
    "created_at",
)
_SESSION_COLUMNS = (
    "id",
    "task_id",
    "user_id",
    "start_time",
    "end_time",
    "duration",
    "note",
    "session_type",
    "updated_at",
)
_JSON_COLUMNS = {"category", "tags", "dependencies"}
_TIMESTAMP_COLUMNS = {
    "due_date",
    "created_at",
    "updated_at",
    "completed_at",
    "deleted_at",
    "start_time",
    "end_time",
}


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _encode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _JSON_COLUMNS:
        return json.dumps(list(value))
    if column in _TIMESTAMP_COLUMNS:
        return to_iso(parse_datetime(value))
    if column == "completed":
        return 1 if value else 0
    return value


def _decode_row(row: aiosqlite.Row) -> Row:
    data = dict(row)
    for column in _JSON_COLUMNS.intersection(data):
        raw = data[column]
        data[column] = json.loads(raw) if raw else []
    if "completed" in data:
        data["completed"] = bool(data["completed"])
    return data


def _filter_columns(fields: Row, allowed: Iterable[str]) -> Row:
    allowed_set = set(allowed)
    unknown = set(fields) - allowed_set
    if unknown:
        raise RemoteStoreError(400, f"Unknown columns: {sorted(unknown)}")
    return fields


def _translate_errors(
    method: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Report driver failures as ``RemoteStoreError`` after rolling back.

    Constraint violations map to 409, operational failures (locked or missing
    database, disk full) to ``RemoteUnavailableError`` and anything else to 500.
    """

    @functools.wraps(method)
    async def wrapper(self: "SQLiteRemoteStore", *args: Any, **kwargs: Any) -> T:
        try:
            return await method(self, *args, **kwargs)
        except aiosqlite.Error as exc:
            await self._rollback()
            if isinstance(exc, aiosqlite.IntegrityError):
                raise RemoteStoreError(409, str(exc)) from exc
            if isinstance(exc, aiosqlite.OperationalError):
                logger.warning(f"SQLite operational error in {method.__name__}: {exc}")
                raise RemoteUnavailableError(str(exc)) from exc
            logger.error(f"SQLite error in {method.__name__}: {exc}")
            raise RemoteStoreError(500, str(exc)) from exc

    return wrapper


class SQLiteRemoteStore:
    """Persist tasks, subtasks and sessions to SQLite, authenticated as one local user."""

    def __init__(self, database_path: Path, user_id: Optional[str] = None):
        self._path = database_path
        self._user_id = user_id
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""
        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                category TEXT NOT NULL DEFAULT '["general"]',
                tags TEXT NOT NULL DEFAULT '[]',
                priority TEXT NOT NULL DEFAULT 'medium',
                status TEXT NOT NULL DEFAULT 'todo',
                progress INTEGER NOT NULL DEFAULT 0,
                due_date TEXT,
                time_estimate INTEGER,
                time_spent INTEGER NOT NULL DEFAULT 0,
                dependencies TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                deleted_at TEXT
            );

            CREATE TABLE IF NOT EXISTS subtasks (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                completed INTEGER NOT NULL DEFAULT 0,
                time_estimate INTEGER,
                position INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS time_sessions (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT,
                duration INTEGER NOT NULL DEFAULT 0,
                note TEXT,
                session_type TEXT,
                updated_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id, deleted_at);
            CREATE INDEX IF NOT EXISTS idx_subtasks_task ON subtasks(task_id, position);
            CREATE INDEX IF NOT EXISTS idx_sessions_user_start
                ON time_sessions(user_id, start_time);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RemoteStoreError(503, "SQLite remote store is not initialized")
        return self._connection

    async def _rollback(self) -> None:
        if self._connection is None:
            return
        try:
            await self._connection.rollback()
        except aiosqlite.Error as exc:
            logger.warning(f"SQLite rollback failed: {exc}")

    async def get_user_id(self) -> Optional[str]:
        return self._user_id

    @_translate_errors
    async def ping(self) -> bool:
        cursor = await self._conn().execute("SELECT 1")
        await cursor.close()
        return True

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @_translate_errors
    async def fetch_tasks(self, user_id: str) -> list[Row]:
        """Return non-deleted tasks newest first with their subtasks embedded."""
        conn = self._conn()
        cursor = await conn.execute(
            """
            SELECT * FROM tasks
            WHERE user_id = ? AND deleted_at IS NULL
            ORDER BY created_at DESC
            """,
            (user_id,),
        )
        tasks = [_decode_row(row) for row in await cursor.fetchall()]
        await cursor.close()
        if not tasks:
            return []

        placeholders = ",".join("?" for _ in tasks)
        cursor = await conn.execute(
            f"""
            SELECT * FROM subtasks
            WHERE task_id IN ({placeholders})
            ORDER BY position ASC, created_at ASC
            """,
            [task["id"] for task in tasks],
        )
        subtasks = [_decode_row(row) for row in await cursor.fetchall()]
        await cursor.close()

        by_task: dict[str, list[Row]] = {task["id"]: [] for task in tasks}
        for subtask in subtasks:
            by_task[subtask["task_id"]].append(subtask)
        for task in tasks:
            task["subtasks"] = by_task[task["id"]]
        return tasks

    async def _get_task(self, task_id: str) -> Optional[Row]:
        cursor = await self._conn().execute(
            "SELECT * FROM tasks WHERE id = ?", (task_id,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return _decode_row(row) if row is not None else None

    @_translate_errors
    async def insert_task(self, row: Row) -> Row:
        _filter_columns(row, _TASK_COLUMNS)
        data = dict(row)
        data.setdefault("created_at", _now_iso())
        data.setdefault("updated_at", data["created_at"])
        columns = list(data)
        conn = self._conn()
        await conn.execute(
            f"INSERT INTO tasks ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            [_encode(column, data[column]) for column in columns],
        )
        await conn.commit()
        stored = await self._get_task(data["id"])
        assert stored is not None
        return stored

    @_translate_errors
    async def update_task(self, task_id: str, fields: Row) -> Optional[Row]:
        _filter_columns(fields, _TASK_COLUMNS)
        if not fields:
            return await self._get_task(task_id)
        assignments = ", ".join(f"{column} = ?" for column in fields)
        conn = self._conn()
        cursor = await conn.execute(
            f"UPDATE tasks SET {assignments} WHERE id = ?",
            [*(_encode(column, value) for column, value in fields.items()), task_id],
        )
        updated = cursor.rowcount
        await cursor.close()
        await conn.commit()
        if not updated:
            return None
        return await self._get_task(task_id)

    @_translate_errors
    async def delete_task(self, task_id: str) -> bool:
        conn = self._conn()
        cursor = await conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        deleted = cursor.rowcount
        await cursor.close()
        await conn.commit()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    @_translate_errors
    async def insert_subtasks(self, rows: list[Row]) -> list[Row]:
        if not rows:
            return []
        for row in rows:
            _filter_columns(row, _SUBTASK_COLUMNS)
        conn = self._conn()
        stored: list[Row] = []
        for row in rows:
            data = dict(row)
            data.setdefault("id", str(uuid.uuid4()))
            data.setdefault("created_at", _now_iso())
            columns = list(data)
            await conn.execute(
                f"INSERT INTO subtasks ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [_encode(column, data[column]) for column in columns],
            )
            stored.append(data)
        await conn.commit()
        return stored

    @_translate_errors
    async def update_subtasks(
        self, task_id: str, fields: Row, subtask_id: Optional[str] = None
    ) -> int:
        _filter_columns(fields, _SUBTASK_COLUMNS)
        if not fields:
            return 0
        assignments = ", ".join(f"{column} = ?" for column in fields)
        params: list[Any] = [_encode(column, value) for column, value in fields.items()]
        query = f"UPDATE subtasks SET {assignments} WHERE task_id = ?"
        params.append(task_id)
        if subtask_id is not None:
            query += " AND id = ?"
            params.append(subtask_id)
        conn = self._conn()
        cursor = await conn.execute(query, params)
        updated = cursor.rowcount
        await cursor.close()
        await conn.commit()
        return updated

    @_translate_errors
    async def delete_subtask(self, task_id: str, subtask_id: str) -> bool:
        conn = self._conn()
        cursor = await conn.execute(
            "DELETE FROM subtasks WHERE task_id = ? AND id = ?",
            (task_id, subtask_id),
        )
        deleted = cursor.rowcount
        await cursor.close()
        await conn.commit()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Time sessions
    # ------------------------------------------------------------------

    async def _get_session(self, session_id: str) -> Optional[Row]:
        cursor = await self._conn().execute(
            "SELECT * FROM time_sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return _decode_row(row) if row is not None else None

    @_translate_errors
    async def insert_session(self, row: Row) -> Row:
        """Insert a session row, assigning its id when the caller left it out."""
        _filter_columns(row, _SESSION_COLUMNS)
        data = dict(row)
        if not data.get("id"):
            data["id"] = str(uuid.uuid4())
        data.setdefault("updated_at", _now_iso())
        columns = list(data)
        conn = self._conn()
        await conn.execute(
            f"INSERT INTO time_sessions ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            [_encode(column, data[column]) for column in columns],
        )
        await conn.commit()
        stored = await self._get_session(data["id"])
        assert stored is not None
        return stored

    @_translate_errors
    async def update_session(self, session_id: str, fields: Row) -> Optional[Row]:
        _filter_columns(fields, _SESSION_COLUMNS)
        data = dict(fields)
        data.setdefault("updated_at", _now_iso())
        assignments = ", ".join(f"{column} = ?" for column in data)
        conn = self._conn()
        cursor = await conn.execute(
            f"UPDATE time_sessions SET {assignments} WHERE id = ?",
            [*(_encode(column, value) for column, value in data.items()), session_id],
        )
        updated = cursor.rowcount
        await cursor.close()
        await conn.commit()
        if not updated:
            return None
        return await self._get_session(session_id)

    @_translate_errors
    async def upsert_sessions(self, rows: list[Row]) -> list[Row]:
        """Insert or update sessions keyed by id (one row per id, always)."""
        if not rows:
            return []
        conn = self._conn()
        now = _now_iso()
        updatable = [column for column in _SESSION_COLUMNS if column != "id"]
        for row in rows:
            _filter_columns(row, _SESSION_COLUMNS)
            if not row.get("id"):
                raise RemoteStoreError(400, "Upserted sessions must carry an id")
        await conn.executemany(
            f"""
            INSERT INTO time_sessions ({', '.join(_SESSION_COLUMNS)})
            VALUES ({', '.join('?' for _ in _SESSION_COLUMNS)})
            ON CONFLICT(id) DO UPDATE SET
            {', '.join(f'{column} = excluded.{column}' for column in updatable)}
            """,
            [
                [
                    _encode(column, now if column == "updated_at" else row.get(column))
                    for column in _SESSION_COLUMNS
                ]
                for row in rows
            ],
        )
        await conn.commit()
        stored: list[Row] = []
        for row in rows:
            fetched = await self._get_session(row["id"])
            if fetched is not None:
                stored.append(fetched)
        return stored

    @_translate_errors
    async def fetch_sessions(
        self,
        user_id: str,
        *,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        task_id: Optional[str] = None,
    ) -> list[Row]:
        query = "SELECT * FROM time_sessions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if start is not None:
            query += " AND start_time >= ?"
            params.append(to_iso(start))
        if end is not None:
            query += " AND start_time < ?"
            params.append(to_iso(end))
        if task_id is not None:
            query += " AND task_id = ?"
            params.append(task_id)
        query += " ORDER BY start_time ASC"

        cursor = await self._conn().execute(query, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return [_decode_row(row) for row in rows]


__all__ = ["SQLiteRemoteStore"]
