"""Time source used by the runtime for timers, retries and recorded timestamps."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Protocol

from market_pulse.common.types import utcnow


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time; sleeping suspends the coroutine without holding a thread."""

    def now(self) -> datetime:
        return utcnow()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class TimeSkippingClock:
    """Virtual clock that advances instantly on sleep.

    Lets tests drive five-minute monitor cycles and day-long insight timers
    without waiting. Every sleep still yields to the event loop so queries
    and signals interleave the way they do in production.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or utcnow()
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)
