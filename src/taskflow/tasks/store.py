"""In-memory task collection whose writes are mediated by the remote store.

Local state is only changed after the remote write it mirrors has been
confirmed, so a failed call leaves the collection exactly as it was.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Mapping, Optional, TypeVar

from ..clock import Clock
from ..errors import (
    NotAuthenticatedError,
    NotFoundError,
    RemoteWriteError,
    TaskflowError,
    TaskValidationError,
)
from ..remote.base import RemoteStore, call_remote
from ..utils.datetime_utils import parse_datetime, to_iso
from .models import (
    Priority,
    Subtask,
    Task,
    TaskStatus,
    TimeEstimate,
    new_id,
    normalize_category,
    normalize_labels,
)

if TYPE_CHECKING:
    from ..schemas.drafts import TaskDraft

logger = logging.getLogger(__name__)

# Soft-deleted tasks stay restorable for this long before the row is purged
HARD_DELETE_GRACE_SECONDS = 10.0

_UPDATABLE_FIELDS = frozenset(
    {
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
    }
)

T = TypeVar("T")
E = TypeVar("E", bound=Enum)


def _coerce_enum(enum_cls: type[E], value: Any, default: E) -> E:
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise TaskValidationError(
            f"Invalid {enum_cls.__name__} {value!r}; expected one of: {allowed}"
        ) from exc


def _validate_progress(value: Any) -> int:
    try:
        progress = int(value)
    except (TypeError, ValueError) as exc:
        raise TaskValidationError(f"Progress must be an integer, got {value!r}") from exc
    if progress < 0 or progress > 100:
        raise TaskValidationError("Progress must be between 0 and 100")
    return progress


def _validate_time_spent(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        seconds = int(value)
    except (TypeError, ValueError) as exc:
        raise TaskValidationError(f"Time spent must be an integer, got {value!r}") from exc
    return max(0, seconds)


def _validate_title(value: Any, what: str = "Task") -> str:
    title = str(value or "").strip()
    if not title:
        raise TaskValidationError(f"{what} title cannot be empty")
    return title


def _estimate(value: Any) -> Optional[TimeEstimate]:
    try:
        return TimeEstimate.from_value(value)
    except (ValueError, TypeError, AttributeError) as exc:
        raise TaskValidationError(f"Invalid time estimate {value!r}") from exc


def _build_subtask(item: Any, position: int) -> Subtask:
    if isinstance(item, Subtask):
        item.position = position
        return item
    if isinstance(item, str):
        return Subtask(title=_validate_title(item, "Subtask"), position=position)
    if isinstance(item, Mapping):
        return Subtask(
            id=str(item.get("id") or new_id()),
            title=_validate_title(item.get("title"), "Subtask"),
            description=item.get("description") or "",
            completed=bool(item.get("completed", False)),
            time_estimate=_estimate(item.get("time_estimate")),
            position=position,
        )
    raise TaskValidationError(f"Unsupported subtask value {item!r}")


class TaskStore:
    """Own the local task list, the trash staging list and their remote mirror."""

    def __init__(
        self,
        remote: RemoteStore,
        *,
        clock: Clock | None = None,
        grace_seconds: float = HARD_DELETE_GRACE_SECONDS,
        timeout: float = 10.0,
    ):
        self._remote = remote
        self._clock = clock or Clock()
        self._grace_seconds = grace_seconds
        self._timeout = timeout
        self._tasks: list[Task] = []
        self._deleted: list[Task] = []
        self._hard_delete_tasks: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> list[Task]:
        """Snapshot of the active collection, newest first."""
        return list(self._tasks)

    @property
    def deleted_tasks(self) -> list[Task]:
        """Tasks in the restore window, oldest deletion first."""
        return list(self._deleted)

    def active_tasks(self) -> list[Task]:
        """Tasks that are not completed."""
        return [task for task in self._tasks if task.is_active]

    def get(self, task_id: str) -> Optional[Task]:
        return next((task for task in self._tasks if task.id == task_id), None)

    def require(self, task_id: str) -> Task:
        """Return the task or raise ``NotFoundError``."""
        task = self.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _find_deleted(self, task_id: str) -> Optional[Task]:
        return next((task for task in self._deleted if task.id == task_id), None)

    def _missing(self, task_id: str, action: str) -> None:
        logger.warning(f"Cannot {action}: task {task_id} is not loaded")

    # ------------------------------------------------------------------
    # Remote helpers
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[T], action: str) -> T:
        return await call_remote(awaitable, action=action, timeout=self._timeout)

    async def _require_user(self, action: str) -> str:
        user_id = await self._call(self._remote.get_user_id(), "Looking up user")
        if not user_id:
            logger.warning(f"Refusing to {action}: no authenticated user")
            raise NotAuthenticatedError(f"User must be authenticated to {action}")
        return user_id

    async def _update_row(self, task_id: str, fields: dict[str, Any], action: str) -> None:
        row = await self._call(self._remote.update_task(task_id, fields), action)
        if row is None:
            logger.error(f"{action}: task {task_id} no longer exists remotely")
            raise RemoteWriteError(f"Task {task_id} no longer exists remotely")

    # ------------------------------------------------------------------
    # Loading and creation
    # ------------------------------------------------------------------

    async def load(self) -> list[Task]:
        """Replace the collection with the user's non-deleted remote tasks.

        Failures are logged and leave the current collection untouched.
        """

        try:
            user_id = await self._require_user("load tasks")
            rows = await self._call(self._remote.fetch_tasks(user_id), "Loading tasks")
        except TaskflowError as exc:
            logger.error(f"Error loading tasks: {exc}")
            return self.tasks

        loaded: list[Task] = []
        for row in rows:
            try:
                loaded.append(Task.from_row(row))
            except (KeyError, ValueError) as exc:
                logger.warning(f"Skipping malformed task row {row.get('id')!r}: {exc}")

        pending_ids = {task.id for task in self._deleted}
        self._tasks = [task for task in loaded if task.id not in pending_ids]
        logger.info(f"Loaded {len(self._tasks)} tasks for user {user_id}")
        return self.tasks

    def _build_task(self, data: Mapping[str, Any]) -> Task:
        unknown = set(data) - _UPDATABLE_FIELDS - {"id", "subtasks"}
        if unknown:
            raise TaskValidationError(f"Unknown task fields: {sorted(unknown)}")

        now = self._clock.now()
        task = Task(
            id=str(data.get("id") or new_id()),
            title=_validate_title(data.get("title")),
            created_at=now,
            updated_at=now,
            description=data.get("description") or None,
            category=normalize_category(data.get("category")),
            tags=normalize_labels(data.get("tags")),
            priority=_coerce_enum(Priority, data.get("priority"), Priority.MEDIUM),
            status=_coerce_enum(TaskStatus, data.get("status"), TaskStatus.TODO),
            progress=_validate_progress(data.get("progress", 0)),
            due_date=parse_datetime(data.get("due_date")),
            time_estimate=_estimate(data.get("time_estimate")),
            time_spent=_validate_time_spent(data.get("time_spent")),
            dependencies=normalize_labels(data.get("dependencies")),
            subtasks=[
                _build_subtask(item, position)
                for position, item in enumerate(data.get("subtasks") or [])
            ],
        )
        if task.status is TaskStatus.COMPLETED:
            task.progress = 100
            task.completed_at = now
            for subtask in task.subtasks:
                subtask.completed = True
        return task

    async def add(self, data: Mapping[str, Any]) -> Task:
        """Create a task (and its subtasks) remotely, then add it locally."""

        task = self._build_task(data)
        user_id = await self._require_user("add tasks")

        await self._call(
            self._remote.insert_task(task.to_row(user_id)), f"Inserting task {task.id}"
        )
        if task.subtasks:
            try:
                await self._call(
                    self._remote.insert_subtasks(
                        [subtask.to_row(task.id) for subtask in task.subtasks]
                    ),
                    f"Inserting subtasks for task {task.id}",
                )
            except RemoteWriteError:
                logger.error(f"Rolling back task {task.id} after subtask insert failure")
                try:
                    await self._call(
                        self._remote.delete_task(task.id), f"Rolling back task {task.id}"
                    )
                except RemoteWriteError as cleanup_exc:
                    logger.error(
                        f"Rollback of task {task.id} failed, row left behind: {cleanup_exc}"
                    )
                raise

        self._tasks.insert(0, task)
        logger.info(f"Added task {task.id} '{task.title}'")
        return task

    async def add_from_draft(self, draft: "TaskDraft") -> Task:
        """Create a task from parser output, including degraded drafts."""

        if draft.error:
            logger.info(f"Creating task from degraded draft ({draft.error})")
        return await self.add(draft.to_task_fields())

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _validated_changes(self, task: Task, updates: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise TaskValidationError(f"Unknown task fields: {sorted(unknown)}")

        changes: dict[str, Any] = {}
        for name, value in updates.items():
            if name == "title":
                changes[name] = _validate_title(value)
            elif name == "description":
                changes[name] = value or None
            elif name == "category":
                changes[name] = normalize_category(value)
            elif name in ("tags", "dependencies"):
                changes[name] = normalize_labels(value)
            elif name == "priority":
                changes[name] = _coerce_enum(Priority, value, task.priority)
            elif name == "status":
                changes[name] = _coerce_enum(TaskStatus, value, task.status)
            elif name == "progress":
                changes[name] = _validate_progress(value)
            elif name == "due_date":
                changes[name] = parse_datetime(value)
            elif name == "time_estimate":
                changes[name] = _estimate(value)
            elif name == "time_spent":
                changes[name] = _validate_time_spent(value)
        return changes

    @staticmethod
    def _row_fields(changes: Mapping[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for name, value in changes.items():
            if isinstance(value, Enum):
                fields[name] = value.value
            elif name in ("due_date", "completed_at", "updated_at", "deleted_at"):
                fields[name] = to_iso(value)
            elif name == "time_estimate":
                fields[name] = value.to_minutes() if value else None
            elif isinstance(value, list):
                fields[name] = list(value)
            else:
                fields[name] = value
        return fields

    async def update(self, task_id: str, updates: Mapping[str, Any]) -> Optional[Task]:
        """Persist ``updates`` remotely and patch the local task on success.

        Setting ``status`` to ``completed`` applies the completion invariant:
        progress becomes 100 and every subtask is marked completed.
        """

        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "update task")
            return None

        changes = self._validated_changes(task, updates)
        now = self._clock.now()
        completing = changes.get("status") is TaskStatus.COMPLETED
        if completing:
            changes["progress"] = 100
            changes["completed_at"] = task.completed_at or now
        elif "status" in changes and task.status is TaskStatus.COMPLETED:
            changes["completed_at"] = None

        await self._require_user("update tasks")
        await self._update_row(
            task_id,
            {**self._row_fields(changes), "updated_at": to_iso(now)},
            f"Updating task {task_id}",
        )
        if completing and task.subtasks:
            try:
                await self._call(
                    self._remote.update_subtasks(task_id, {"completed": True}),
                    f"Completing subtasks of task {task_id}",
                )
            except RemoteWriteError:
                await self._revert_row(task, changes)
                raise

        for name, value in changes.items():
            setattr(task, name, value)
        if completing:
            for subtask in task.subtasks:
                subtask.completed = True
        task.updated_at = now
        return task

    async def _revert_row(self, task: Task, changes: Mapping[str, Any]) -> None:
        logger.error(f"Reverting task {task.id} after subtask completion failure")
        previous = {name: getattr(task, name) for name in changes}
        try:
            await self._update_row(
                task.id,
                {**self._row_fields(previous), "updated_at": to_iso(task.updated_at)},
                f"Reverting task {task.id}",
            )
        except RemoteWriteError as cleanup_exc:
            logger.error(
                f"Revert of task {task.id} failed, remote row left completed: {cleanup_exc}"
            )

    async def complete_task(self, task_id: str) -> Optional[Task]:
        """Mark the task and all of its subtasks completed."""
        task = await self.update(task_id, {"status": TaskStatus.COMPLETED})
        if task is not None:
            logger.info(f"✓ Task completed: {task_id}")
        return task

    async def update_progress(self, task_id: str, progress: int) -> Optional[Task]:
        return await self.update(task_id, {"progress": _validate_progress(progress)})

    async def update_category(
        self, task_id: str, category: str, add: bool
    ) -> Optional[Task]:
        """Add ``category`` to (or remove it from) the task's label set."""

        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "update category")
            return None

        label = str(category or "").strip()
        if not label:
            raise TaskValidationError("Category cannot be empty")
        if add:
            categories = [*task.category, label] if label not in task.category else task.category
        else:
            categories = [item for item in task.category if item != label]
        return await self.update(task_id, {"category": categories})

    async def add_dependency(self, task_id: str, dependency_id: str) -> Optional[Task]:
        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "add dependency")
            return None
        if dependency_id == task_id:
            raise TaskValidationError("A task cannot depend on itself")
        if self.get(dependency_id) is None:
            raise TaskValidationError(f"Unknown dependency task {dependency_id}")
        if dependency_id in task.dependencies:
            return task
        return await self.update(
            task_id, {"dependencies": [*task.dependencies, dependency_id]}
        )

    async def remove_dependency(self, task_id: str, dependency_id: str) -> Optional[Task]:
        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "remove dependency")
            return None
        if dependency_id not in task.dependencies:
            return task
        return await self.update(
            task_id,
            {"dependencies": [item for item in task.dependencies if item != dependency_id]},
        )

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    async def add_subtask(
        self,
        task_id: str,
        title: str,
        description: str = "",
        time_estimate: Any = None,
    ) -> Optional[Subtask]:
        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "add subtask")
            return None

        position = max((item.position for item in task.subtasks), default=-1) + 1
        subtask = _build_subtask(
            {"title": title, "description": description, "time_estimate": time_estimate},
            position,
        )
        await self._require_user("add subtasks")
        await self._call(
            self._remote.insert_subtasks([subtask.to_row(task_id)]),
            f"Adding subtask to task {task_id}",
        )
        task.subtasks.append(subtask)
        task.updated_at = self._clock.now()
        return subtask

    async def delete_subtask(self, task_id: str, subtask_id: str) -> Optional[Subtask]:
        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "delete subtask")
            return None
        subtask = next((item for item in task.subtasks if item.id == subtask_id), None)
        if subtask is None:
            logger.warning(f"Cannot delete subtask: {subtask_id} not found on task {task_id}")
            return None

        await self._require_user("delete subtasks")
        removed = await self._call(
            self._remote.delete_subtask(task_id, subtask_id),
            f"Deleting subtask {subtask_id}",
        )
        if not removed:
            logger.warning(f"Subtask {subtask_id} was already gone remotely")
        task.subtasks.remove(subtask)
        task.updated_at = self._clock.now()
        return subtask

    async def toggle_subtask(self, task_id: str, index: int) -> Optional[Subtask]:
        """Flip the completed flag of the subtask at ``index``."""

        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "toggle subtask")
            return None
        if index < 0 or index >= len(task.subtasks):
            logger.warning(f"Cannot toggle subtask: index {index} out of range on task {task_id}")
            return None

        subtask = task.subtasks[index]
        completed = not subtask.completed
        await self._require_user("toggle subtasks")
        await self._call(
            self._remote.update_subtasks(
                task_id, {"completed": completed}, subtask_id=subtask.id
            ),
            f"Toggling subtask {subtask.id}",
        )
        subtask.completed = completed
        task.updated_at = self._clock.now()
        return subtask

    # ------------------------------------------------------------------
    # Soft delete / restore
    # ------------------------------------------------------------------

    async def delete(self, task_id: str) -> Optional[Task]:
        """Soft-delete the task and schedule its hard delete after the grace window."""

        task = self.get(task_id)
        if task is None:
            self._missing(task_id, "delete task")
            return None

        await self._require_user("delete tasks")
        now = self._clock.now()
        await self._update_row(
            task_id,
            {"deleted_at": to_iso(now), "updated_at": to_iso(now)},
            f"Soft deleting task {task_id}",
        )

        self._tasks.remove(task)
        task.deleted_at = now
        self._deleted.append(task)
        self._schedule_hard_delete(task_id)
        logger.info(f"🗑️ Task {task_id} moved to trash, purge in {self._grace_seconds:g}s")
        return task

    async def restore(self, task_id: str) -> Optional[Task]:
        """Undo a soft delete while the grace window is still open.

        Restoring a task whose window has passed is a no-op returning ``None``.
        """

        task = self._find_deleted(task_id)
        if task is None:
            logger.warning(f"Task {task_id} is not awaiting deletion; nothing to restore")
            return None

        await self._require_user("restore tasks")
        self._cancel_hard_delete(task_id)
        now = self._clock.now()
        try:
            await self._update_row(
                task_id,
                {"deleted_at": None, "updated_at": to_iso(now)},
                f"Restoring task {task_id}",
            )
        except RemoteWriteError:
            self._schedule_hard_delete(task_id)
            raise

        self._deleted.remove(task)
        task.deleted_at = None
        task.updated_at = now
        index = next(
            (i for i, item in enumerate(self._tasks) if item.created_at < task.created_at),
            len(self._tasks),
        )
        self._tasks.insert(index, task)
        logger.info(f"♻️ Task {task_id} restored")
        return task

    def _schedule_hard_delete(self, task_id: str) -> None:
        self._cancel_hard_delete(task_id)
        self._hard_delete_tasks[task_id] = asyncio.create_task(
            self._wait_and_purge(task_id)
        )

    def _cancel_hard_delete(self, task_id: str) -> None:
        existing = self._hard_delete_tasks.pop(task_id, None)
        if existing is not None and not existing.done():
            existing.cancel()

    async def _wait_and_purge(self, task_id: str) -> None:
        """Wait out the grace window, then remove the row for good."""
        try:
            await self._clock.sleep(self._grace_seconds)
            if self._find_deleted(task_id) is None:
                return

            try:
                await self._call(
                    self._remote.delete_task(task_id), f"Hard deleting task {task_id}"
                )
                logger.info(f"Task {task_id} permanently deleted")
            except TaskflowError as exc:
                logger.error(f"Error hard deleting task {task_id}, row stays soft-deleted: {exc}")

            self._deleted = [task for task in self._deleted if task.id != task_id]
        except asyncio.CancelledError:
            logger.debug(f"Hard delete of task {task_id} was cancelled")
            raise
        finally:
            if self._hard_delete_tasks.get(task_id) is asyncio.current_task():
                del self._hard_delete_tasks[task_id]

    async def shutdown(self) -> None:
        """Cancel pending hard deletes; their rows stay soft-deleted remotely."""
        pending = list(self._hard_delete_tasks.values())
        self._hard_delete_tasks.clear()
        for task in pending:
            if not task.done():
                task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["HARD_DELETE_GRACE_SECONDS", "TaskStore"]
