"""Wall-clock abstraction used for elapsed-time math and delayed work."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone


class Clock:
    """Real clock backed by ``datetime.now`` and ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two instants, never negative."""

    return max(0, int((end - start).total_seconds()))


__all__ = ["Clock", "elapsed_seconds"]
