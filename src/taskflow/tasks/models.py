"""Domain models representing tasks, subtasks and time estimates."""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from ..utils.datetime_utils import parse_datetime, to_iso

DEFAULT_CATEGORY = "general"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class EstimateUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_category(value: Any) -> list[str]:
    """Coerce a category value into a non-empty, de-duplicated label list."""

    if value is None:
        raw: Iterable[Any] = []
    elif isinstance(value, str):
        raw = [value]
    else:
        raw = value

    labels: list[str] = []
    for item in raw:
        if item is None:
            continue
        label = str(item).strip()
        if label and label not in labels:
            labels.append(label)
    return labels or [DEFAULT_CATEGORY]


def normalize_labels(value: Any) -> list[str]:
    """Coerce tags or dependency ids into an ordered list without duplicates."""

    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    labels: list[str] = []
    for item in value:
        label = str(item).strip()
        if label and label not in labels:
            labels.append(label)
    return labels


@dataclass(slots=True)
class TimeEstimate:
    """Planned effort for a task or subtask."""

    value: float
    unit: EstimateUnit = EstimateUnit.MINUTES

    def to_minutes(self) -> int:
        minutes = self.value * 60 if self.unit is EstimateUnit.HOURS else self.value
        return int(round(minutes))

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "unit": self.unit.value}

    @classmethod
    def from_value(cls, value: Any) -> Optional["TimeEstimate"]:
        """Build an estimate from a dict, a model, a minute count or ``None``."""

        if value is None:
            return None
        if isinstance(value, TimeEstimate):
            return value
        if isinstance(value, (int, float)):
            return cls(value=value, unit=EstimateUnit.MINUTES)
        if isinstance(value, Mapping):
            raw = value.get("value")
            if raw is None:
                return None
            return cls(value=raw, unit=EstimateUnit(value.get("unit", "minutes")))
        unit = getattr(value, "unit", EstimateUnit.MINUTES)
        return cls(value=getattr(value, "value"), unit=EstimateUnit(unit))


@dataclass(slots=True)
class Subtask:
    """A checklist item belonging to a task."""

    title: str
    description: str = ""
    completed: bool = False
    time_estimate: Optional[TimeEstimate] = None
    position: int = 0
    id: str = field(default_factory=new_id)

    def to_row(self, task_id: str) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": task_id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "time_estimate": (
                self.time_estimate.to_minutes() if self.time_estimate else None
            ),
            "position": self.position,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Subtask":
        return cls(
            id=str(row.get("id") or new_id()),
            title=row.get("title", ""),
            description=row.get("description") or "",
            completed=bool(row.get("completed", False)),
            time_estimate=TimeEstimate.from_value(row.get("time_estimate")),
            position=int(row.get("position") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "time_estimate": (
                self.time_estimate.to_dict() if self.time_estimate else None
            ),
        }


@dataclass(slots=True)
class Task:
    """A unit of work together with its subtasks and bookkeeping timestamps."""

    id: str
    title: str
    created_at: datetime.datetime
    updated_at: datetime.datetime
    description: Optional[str] = None
    category: list[str] = field(default_factory=lambda: [DEFAULT_CATEGORY])
    tags: list[str] = field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    progress: int = 0
    due_date: Optional[datetime.datetime] = None
    time_estimate: Optional[TimeEstimate] = None
    time_spent: int = 0
    completed_at: Optional[datetime.datetime] = None
    dependencies: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    deleted_at: Optional[datetime.datetime] = None

    @property
    def is_active(self) -> bool:
        """Return True unless the task is completed."""

        return self.status is not TaskStatus.COMPLETED

    def to_row(self, user_id: str) -> dict[str, Any]:
        """Serialize the task columns (subtasks are stored separately)."""

        return {
            "id": self.id,
            "user_id": user_id,
            "title": self.title,
            "description": self.description,
            "category": list(self.category),
            "tags": list(self.tags),
            "priority": self.priority.value,
            "status": self.status.value,
            "progress": self.progress,
            "due_date": to_iso(self.due_date),
            "time_estimate": (
                self.time_estimate.to_minutes() if self.time_estimate else None
            ),
            "time_spent": self.time_spent,
            "dependencies": list(self.dependencies),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "completed_at": to_iso(self.completed_at),
            "deleted_at": to_iso(self.deleted_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Task":
        created_at = parse_datetime(row.get("created_at")) or datetime.datetime.now(
            datetime.timezone.utc
        )
        raw_subtasks = sorted(
            row.get("subtasks") or [], key=lambda item: item.get("position") or 0
        )
        return cls(
            id=str(row["id"]),
            title=row.get("title", ""),
            description=row.get("description"),
            category=normalize_category(row.get("category")),
            tags=normalize_labels(row.get("tags")),
            priority=Priority(row.get("priority") or Priority.MEDIUM.value),
            status=TaskStatus(row.get("status") or TaskStatus.TODO.value),
            progress=int(row.get("progress") or 0),
            due_date=parse_datetime(row.get("due_date")),
            time_estimate=TimeEstimate.from_value(row.get("time_estimate")),
            time_spent=int(row.get("time_spent") or 0),
            dependencies=normalize_labels(row.get("dependencies")),
            created_at=created_at,
            updated_at=parse_datetime(row.get("updated_at")) or created_at,
            completed_at=parse_datetime(row.get("completed_at")),
            deleted_at=parse_datetime(row.get("deleted_at")),
            subtasks=[Subtask.from_row(item) for item in raw_subtasks],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON responses."""

        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": list(self.category),
            "tags": list(self.tags),
            "priority": self.priority.value,
            "status": self.status.value,
            "progress": self.progress,
            "due_date": to_iso(self.due_date),
            "time_estimate": (
                self.time_estimate.to_dict() if self.time_estimate else None
            ),
            "time_spent": self.time_spent,
            "dependencies": list(self.dependencies),
            "subtasks": [subtask.to_dict() for subtask in self.subtasks],
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "completed_at": to_iso(self.completed_at),
            "deleted_at": to_iso(self.deleted_at),
        }


__all__ = [
    "DEFAULT_CATEGORY",
    "EstimateUnit",
    "Priority",
    "Subtask",
    "Task",
    "TaskStatus",
    "TimeEstimate",
    "new_id",
    "normalize_category",
    "normalize_labels",
]
