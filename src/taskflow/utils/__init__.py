"""Utility helpers shared across taskflow services."""

from .datetime_utils import day_bounds, ensure_utc, parse_datetime, to_iso
from .time_format import (
    format_duration,
    format_duration_detailed,
    format_hours_minutes,
    format_time_ago,
    format_time_estimate,
)

__all__ = [
    "day_bounds",
    "ensure_utc",
    "parse_datetime",
    "to_iso",
    "format_duration",
    "format_duration_detailed",
    "format_hours_minutes",
    "format_time_ago",
    "format_time_estimate",
]
