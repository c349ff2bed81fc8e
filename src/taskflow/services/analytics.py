"""Aggregate statistics over tracked time sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from ..tasks.models import Task, TaskStatus
from ..tracking.models import TimeSession


@dataclass(slots=True)
class CategoryTimeAllocation:
    category: str
    total_time: int
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "total_time": self.total_time,
            "percentage": round(self.percentage, 2),
        }


@dataclass(slots=True)
class TimeStatistics:
    total_tracked_time: int = 0
    daily_average: float = 0.0
    most_productive_day: str = "None"
    most_productive_day_time: int = 0
    category_breakdown: list[CategoryTimeAllocation] = field(default_factory=list)
    completed_tasks_time: int = 0
    pending_tasks_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tracked_time": self.total_tracked_time,
            "daily_average": round(self.daily_average, 2),
            "most_productive_day": {
                "day": self.most_productive_day,
                "time": self.most_productive_day_time,
            },
            "category_breakdown": [item.to_dict() for item in self.category_breakdown],
            "completed_tasks_time": self.completed_tasks_time,
            "pending_tasks_time": self.pending_tasks_time,
        }


def calculate_time_statistics(
    sessions: Iterable[TimeSession], tasks: Iterable[Task]
) -> TimeStatistics:
    """Summarize ``sessions`` by day, by task category and by task status.

    Days are UTC calendar days. A session counts towards every category of its
    task, so category totals can add up to more than the tracked total.
    Sessions whose task is unknown only count towards the totals by day.
    """

    session_list = list(sessions)
    by_id = {task.id: task for task in tasks}
    stats = TimeStatistics(
        total_tracked_time=sum(session.duration for session in session_list)
    )

    per_day: dict[str, int] = {}
    per_category: dict[str, int] = {}
    for session in session_list:
        day = session.start_time.date().isoformat()
        per_day[day] = per_day.get(day, 0) + session.duration

        task = by_id.get(session.task_id)
        if task is None:
            continue
        for category in task.category:
            per_category[category] = per_category.get(category, 0) + session.duration
        if task.status is TaskStatus.COMPLETED:
            stats.completed_tasks_time += session.duration
        else:
            stats.pending_tasks_time += session.duration

    if per_day:
        stats.daily_average = stats.total_tracked_time / len(per_day)
        # Earliest day wins a tie
        for day in sorted(per_day):
            if per_day[day] > stats.most_productive_day_time:
                stats.most_productive_day = day
                stats.most_productive_day_time = per_day[day]

    total = stats.total_tracked_time
    stats.category_breakdown = sorted(
        (
            CategoryTimeAllocation(
                category=category,
                total_time=time,
                percentage=(time / total * 100) if total > 0 else 0.0,
            )
            for category, time in per_category.items()
        ),
        key=lambda item: item.total_time,
        reverse=True,
    )
    return stats


__all__ = ["CategoryTimeAllocation", "TimeStatistics", "calculate_time_statistics"]
