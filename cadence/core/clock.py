"""
Clock seam — the engine's only source of "now" and of waiting.

SystemClock is used in production. ManualClock drives virtual time in tests:
sleepers park until advance() moves time past their deadline, so a
week of timer activity can be replayed in milliseconds.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Returns timezone-aware instants and suspends for durations."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        ...


def local_zone() -> tzinfo:
    """
    The host's IANA zone, so wall-clock fields get the offset of their own date.

    Looked up from $TZ, then the /etc/localtime symlink. Hosts that expose
    neither get the current fixed UTC offset.
    """
    candidates = []
    env_key = os.environ.get("TZ", "").lstrip(":")
    if env_key:
        candidates.append(env_key)
    target = os.path.realpath("/etc/localtime")
    if "zoneinfo/" in target:
        candidates.append(target.split("zoneinfo/", 1)[1])
    for key in candidates:
        try:
            return ZoneInfo(key)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            logger.debug(f"Ignoring unknown local zone {key!r}")
    return datetime.now().astimezone().tzinfo


class SystemClock(Clock):
    """Wall clock in the given zone (host local zone when tz is None)."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz or local_zone()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """
    Virtual clock for deterministic tests.

    Usage:
        clock = ManualClock(datetime(2025, 4, 11, 10, tzinfo=timezone.utc))
        task = asyncio.create_task(clock.sleep(60))
        await clock.advance(seconds=60)   # task completes
    """

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("ManualClock needs a timezone-aware start instant")
        self._now = start
        self._sleepers: list[tuple[datetime, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        deadline = self._now + timedelta(seconds=seconds)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (deadline, next(self._seq), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        """Number of coroutines currently parked in sleep()."""
        return sum(1 for _, _, f in self._sleepers if not f.done())

    async def advance(
        self,
        seconds: float = 0,
        *,
        minutes: float = 0,
        hours: float = 0,
        days: float = 0,
    ) -> None:
        """Move time forward, waking sleepers in deadline order."""
        delta = timedelta(seconds=seconds, minutes=minutes, hours=hours, days=days)
        await self.set(self._now + delta)

    async def set(self, instant: datetime) -> None:
        """Jump to an absolute instant (never backwards)."""
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= instant:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self._now = max(self._now, deadline)
            future.set_result(None)
            await self.settle()
        self._now = max(self._now, instant)
        await self.settle()

    @staticmethod
    async def settle(rounds: int = 50) -> None:
        """Yield to the loop until woken coroutines reach their next await."""
        for _ in range(rounds):
            await asyncio.sleep(0)
