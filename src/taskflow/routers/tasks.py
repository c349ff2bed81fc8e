"""REST API endpoints for task management."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from ..schemas.drafts import TimeEstimateDraft
from ..tasks.models import Priority, TaskStatus
from .deps import get_context, not_found, service_errors

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


class SubtaskInput(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    time_estimate: Optional[TimeEstimateDraft] = None


class CreateTaskRequest(BaseModel):
    """Request body for creating a task."""

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: list[str] | str | None = None
    tags: list[str] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    progress: int = Field(default=0, ge=0, le=100)
    due_date: Optional[datetime] = None
    time_estimate: Optional[TimeEstimateDraft] = None
    dependencies: list[str] = Field(default_factory=list)
    subtasks: list[SubtaskInput] = Field(default_factory=list)


class UpdateTaskRequest(BaseModel):
    """Partial update; only fields present in the body are changed."""

    title: Optional[str] = None
    description: Optional[str] = None
    category: list[str] | str | None = None
    tags: Optional[list[str]] = None
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    due_date: Optional[datetime] = None
    time_estimate: Optional[TimeEstimateDraft] = None
    time_spent: Optional[int] = Field(default=None, ge=0)
    dependencies: Optional[list[str]] = None


class ParseTaskRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Free-text task description")
    create: bool = Field(default=True, description="Create the task from the draft")


class ProgressRequest(BaseModel):
    progress: int = Field(..., ge=0, le=100)


class CategoryRequest(BaseModel):
    category: str = Field(..., min_length=1)
    add: bool = True


class DependencyRequest(BaseModel):
    dependency_id: str = Field(..., min_length=1)


@router.get("")
async def list_tasks(request: Request, active: bool = False) -> list[dict[str, Any]]:
    """List tasks, newest first."""
    ctx = get_context(request)
    tasks = ctx.tasks.active_tasks() if active else ctx.tasks.tasks
    return [task.to_dict() for task in tasks]


@router.post("/reload")
async def reload_tasks(request: Request) -> list[dict[str, Any]]:
    """Refresh the task list from the remote store."""
    ctx = get_context(request)
    return [task.to_dict() for task in await ctx.tasks.load()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(request: Request, body: CreateTaskRequest) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        task = await ctx.tasks.add(body.model_dump(exclude_none=True))
    return task.to_dict()


@router.post("/parse")
async def parse_task(request: Request, body: ParseTaskRequest) -> dict[str, Any]:
    """Turn free text into a task draft and optionally create the task."""
    ctx = get_context(request)
    draft = await ctx.parser.parse(body.text)
    result: dict[str, Any] = {"draft": draft.model_dump(mode="json"), "task": None}
    if body.create:
        with service_errors():
            task = await ctx.tasks.add_from_draft(draft)
        result["task"] = task.to_dict()
    return result


@router.get("/trash")
async def list_deleted_tasks(request: Request) -> list[dict[str, Any]]:
    """Tasks deleted recently enough to be restored."""
    ctx = get_context(request)
    return [task.to_dict() for task in ctx.tasks.deleted_tasks]


@router.get("/{task_id}")
async def get_task(request: Request, task_id: str) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        return ctx.tasks.require(task_id).to_dict()


@router.patch("/{task_id}")
async def update_task(
    request: Request, task_id: str, body: UpdateTaskRequest
) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        task = await ctx.tasks.update(task_id, body.model_dump(exclude_unset=True))
    if task is None:
        raise not_found("Task", task_id)
    return task.to_dict()


@router.post("/{task_id}/complete")
async def complete_task(request: Request, task_id: str) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        task = await ctx.tasks.complete_task(task_id)
    if task is None:
        raise not_found("Task", task_id)
    return task.to_dict()


@router.put("/{task_id}/progress")
async def update_progress(
    request: Request, task_id: str, body: ProgressRequest
) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        task = await ctx.tasks.update_progress(task_id, body.progress)
    if task is None:
        raise not_found("Task", task_id)
    return task.to_dict()


@router.post("/{task_id}/categories")
async def update_category(
    request: Request, task_id: str, body: CategoryRequest
) -> dict[str, Any]:
    """Add a category to the task or remove it (``add: false``)."""
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        task = await ctx.tasks.update_category(task_id, body.category, body.add)
    if task is None:
        raise not_found("Task", task_id)
    return task.to_dict()


@router.post("/{task_id}/subtasks", status_code=status.HTTP_201_CREATED)
async def add_subtask(request: Request, task_id: str, body: SubtaskInput) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        subtask = await ctx.tasks.add_subtask(
            task_id,
            body.title,
            body.description,
            body.time_estimate.model_dump() if body.time_estimate else None,
        )
    if subtask is None:
        raise not_found("Task", task_id)
    return subtask.to_dict()


@router.delete("/{task_id}/subtasks/{subtask_id}")
async def delete_subtask(request: Request, task_id: str, subtask_id: str) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        subtask = await ctx.tasks.delete_subtask(task_id, subtask_id)
    if subtask is None:
        raise not_found("Subtask", subtask_id)
    return {"success": True, "task_id": task_id, "subtask_id": subtask_id}


@router.post("/{task_id}/subtasks/{index}/toggle")
async def toggle_subtask(request: Request, task_id: str, index: int) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        subtask = await ctx.tasks.toggle_subtask(task_id, index)
    if subtask is None:
        raise not_found("Subtask at index", str(index))
    return subtask.to_dict()


@router.post("/{task_id}/dependencies")
async def add_dependency(
    request: Request, task_id: str, body: DependencyRequest
) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        task = await ctx.tasks.add_dependency(task_id, body.dependency_id)
    if task is None:
        raise not_found("Task", task_id)
    return task.to_dict()


@router.delete("/{task_id}/dependencies/{dependency_id}")
async def remove_dependency(
    request: Request, task_id: str, dependency_id: str
) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        task = await ctx.tasks.remove_dependency(task_id, dependency_id)
    if task is None:
        raise not_found("Task", task_id)
    return task.to_dict()


@router.delete("/{task_id}")
async def delete_task(request: Request, task_id: str) -> dict[str, Any]:
    """Move a task to the trash; it can be restored until the grace window ends."""
    ctx = get_context(request)
    with service_errors():
        ctx.tasks.require(task_id)
        task = await ctx.tasks.delete(task_id)
    if task is None:
        raise not_found("Task", task_id)
    return {"success": True, "task_id": task_id, "action": "deleted"}


@router.post("/{task_id}/restore")
async def restore_task(request: Request, task_id: str) -> dict[str, Any]:
    ctx = get_context(request)
    with service_errors():
        task = await ctx.tasks.restore(task_id)
    if task is None:
        raise not_found("Deleted task", task_id)
    return task.to_dict()


__all__ = ["router"]
