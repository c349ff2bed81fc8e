"""Display formatting for tracked durations and time estimates."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..tasks.models import TimeEstimate


def format_duration(seconds: int) -> str:
    """Render seconds as a zero-padded ``HH:MM:SS`` timer string."""

    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_duration_detailed(seconds: int) -> str:
    """Render seconds as ``2h 30m 15s``.

    Zero components are omitted and the seconds component is dropped once the
    duration reaches ten hours.
    """

    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"

    minutes, remaining_seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m" + (f" {remaining_seconds}s" if remaining_seconds else "")

    hours, remaining_minutes = divmod(minutes, 60)
    text = f"{hours}h"
    if remaining_minutes:
        text += f" {remaining_minutes}m"
    if remaining_seconds and hours < 10:
        text += f" {remaining_seconds}s"
    return text


def format_hours_minutes(seconds: int) -> str:
    """Render seconds as ``1h 5m`` (always both components)."""

    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    return f"{hours}h {remainder // 60}m"


def format_time_estimate(estimate: "TimeEstimate | None") -> str:
    if estimate is None:
        return "No estimate"

    value = int(estimate.value) if float(estimate.value).is_integer() else estimate.value
    unit = estimate.unit.value
    if unit == "minutes" and value >= 60:
        hours, minutes = divmod(int(value), 60)
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{value} {unit}"


def format_time_ago(moment: datetime | None, now: datetime) -> str:
    """Relative label such as ``Just now``, ``5m ago`` or ``3d ago``."""

    if moment is None:
        return "Never"

    diff_minutes = int((now - moment).total_seconds() // 60)
    if diff_minutes < 1:
        return "Just now"
    if diff_minutes < 60:
        return f"{diff_minutes}m ago"

    diff_hours = diff_minutes // 60
    if diff_hours < 24:
        return f"{diff_hours}h ago"
    return f"{diff_hours // 24}d ago"


__all__ = [
    "format_duration",
    "format_duration_detailed",
    "format_hours_minutes",
    "format_time_estimate",
    "format_time_ago",
]
