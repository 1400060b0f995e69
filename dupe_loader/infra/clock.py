"""Clock abstraction so timestamps and delays can be driven by tests."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Seconds since the epoch."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the current task for ``seconds``."""


class SystemClock:
    """Wall-clock time and real event-loop sleeps."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


__all__ = ["Clock", "SystemClock"]
