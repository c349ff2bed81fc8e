"""Structured task drafts produced by the natural-language parser.

Field aliases follow the camelCase JSON the language model is prompted to
return; Python code uses the snake_case names.
"""

from __future__ import annotations

import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..tasks.models import EstimateUnit, Priority, normalize_category, normalize_labels
from ..utils.datetime_utils import parse_datetime


class TimeEstimateDraft(BaseModel):
    """Effort estimate as returned by the model (normalized to minutes)."""

    value: float = Field(..., ge=0)
    unit: EstimateUnit = EstimateUnit.MINUTES

    def in_minutes(self) -> "TimeEstimateDraft":
        if self.unit is EstimateUnit.HOURS:
            return TimeEstimateDraft(value=self.value * 60, unit=EstimateUnit.MINUTES)
        return self


class SubtaskDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    description: str = ""
    time_estimate: Optional[TimeEstimateDraft] = Field(
        default=None, alias="timeEstimate"
    )

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, value: Any) -> str:
        return value or ""

    @field_validator("time_estimate", mode="after")
    @classmethod
    def _estimate_in_minutes(
        cls, value: Optional[TimeEstimateDraft]
    ) -> Optional[TimeEstimateDraft]:
        return value.in_minutes() if value is not None else None


class TaskDraft(BaseModel):
    """Parser output consumed by ``TaskStore.add_from_draft``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    category: list[str] = Field(default_factory=lambda: ["general"])
    tags: list[str] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    description: Optional[str] = None
    due_date: Optional[datetime.datetime] = Field(default=None, alias="dueDate")
    time_estimate: Optional[TimeEstimateDraft] = Field(
        default=None, alias="timeEstimate"
    )
    subtasks: list[SubtaskDraft] = Field(default_factory=list)
    clarifying_questions: list[str] = Field(
        default_factory=list, alias="clarifyingQuestions"
    )
    ai_response: str = Field(default="", alias="aiResponse")
    error: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> list[str]:
        return normalize_category(value)

    @field_validator("tags", "clarifying_questions", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any) -> list[str]:
        return normalize_labels(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {item.value for item in Priority}:
                return lowered
        return Priority.MEDIUM if not isinstance(value, Priority) else value

    @field_validator("due_date", mode="before")
    @classmethod
    def _parse_due_date(cls, value: Any) -> Optional[datetime.datetime]:
        return parse_datetime(value)

    @field_validator("subtasks", mode="before")
    @classmethod
    def _drop_untitled_subtasks(cls, value: Any) -> list[Any]:
        if not value:
            return []
        return [
            item
            for item in value
            if not isinstance(item, dict) or str(item.get("title") or "").strip()
        ]

    @field_validator("time_estimate", mode="after")
    @classmethod
    def _estimate_in_minutes(
        cls, value: Optional[TimeEstimateDraft]
    ) -> Optional[TimeEstimateDraft]:
        return value.in_minutes() if value is not None else None

    @classmethod
    def degraded(cls, text: str, error: str, ai_response: str = "") -> "TaskDraft":
        """Fallback draft that keeps the raw input as the task title."""

        return cls(title=text.strip() or "Untitled task", error=error, ai_response=ai_response)

    def to_task_fields(self) -> dict[str, Any]:
        """Fields accepted by ``TaskStore.add``."""

        return {
            "title": self.title,
            "description": self.description,
            "category": list(self.category),
            "tags": list(self.tags),
            "priority": self.priority,
            "due_date": self.due_date,
            "time_estimate": (
                self.time_estimate.model_dump() if self.time_estimate else None
            ),
            "subtasks": [
                {
                    "title": subtask.title,
                    "description": subtask.description,
                    "time_estimate": (
                        subtask.time_estimate.model_dump()
                        if subtask.time_estimate
                        else None
                    ),
                }
                for subtask in self.subtasks
            ],
        }


__all__ = ["SubtaskDraft", "TaskDraft", "TimeEstimateDraft"]
