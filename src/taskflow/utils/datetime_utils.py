"""Datetime parsing and serialization helpers for remote rows and drafts.

Remote rows carry ISO 8601 strings; the in-memory model works with aware UTC
datetimes. Everything crossing that boundary goes through this module.
"""

from __future__ import annotations

import datetime
from typing import Any, Optional

from dateutil import parser as dateutil_parser


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime.datetime]:
    """Best-effort conversion of an ISO string (or datetime) to aware UTC.

    Args:
        value: ISO 8601 / RFC3339 string, ``datetime`` or ``None``

    Returns:
        Timezone-aware datetime in UTC, or None if parsing fails
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return ensure_utc(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(
            value.year, value.month, value.day, tzinfo=datetime.timezone.utc
        )
    if not isinstance(value, str):
        return None

    try:
        parsed = dateutil_parser.isoparse(value)
    except (ValueError, OverflowError):
        try:
            parsed = dateutil_parser.parse(value)
        except (ValueError, OverflowError):
            return None
    return ensure_utc(parsed)


def to_iso(value: Optional[datetime.datetime]) -> Optional[str]:
    """Serialize a datetime as a UTC ISO 8601 string (``None`` passes through)."""

    if value is None:
        return None
    return ensure_utc(value).isoformat()


def day_bounds(
    moment: datetime.datetime, tz: datetime.tzinfo | None = None
) -> tuple[datetime.datetime, datetime.datetime]:
    """Return the UTC ``[start, end)`` range of the calendar day containing ``moment``.

    The day is evaluated in ``tz`` (UTC when omitted) so "today" follows the
    user's local calendar rather than the server's.
    """

    zone = tz or datetime.timezone.utc
    local = ensure_utc(moment).astimezone(zone)
    start_local = datetime.datetime(local.year, local.month, local.day, tzinfo=zone)
    end_local = start_local + datetime.timedelta(days=1)
    return ensure_utc(start_local), ensure_utc(end_local)


__all__ = ["ensure_utc", "parse_datetime", "to_iso", "day_bounds"]
