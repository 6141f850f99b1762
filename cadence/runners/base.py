"""
TaskRunner — the external collaborator that actually runs a job.

The engine never runs payloads itself. It asks a runner to start a task
in a given mode, and queries it to resolve conflicts with whatever task
is already running.

Failure kinds:
    ValidationError        — the mode is unknown; nothing was started
    RunnerUnavailableError — the runner is not reachable or not ready

Implementations:
    HttpTaskRunner — talks to an agent host over HTTP
    MockTaskRunner — scripted, for tests and dry runs
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class TaskRunner(ABC):
    """Abstract task runner. All calls are non-blocking coroutines."""

    @abstractmethod
    async def start_task(self, mode: str, instructions: str) -> str:
        """Start a task and return its id."""
        ...

    @abstractmethod
    async def has_active_task(self) -> bool:
        ...

    @abstractmethod
    async def interrupt_active_task(self) -> bool:
        """Cancel the running task. Returns False if nothing was running."""
        ...

    @abstractmethod
    async def last_activity_for_active_task(self) -> datetime | None:
        """Timestamp of the active task's most recent message, if any."""
        ...

    async def is_active_task_within(self, duration_ms: float, now: datetime | None = None) -> bool:
        """True if the active task showed activity within duration_ms of now."""
        last = await self.last_activity_for_active_task()
        if last is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now - last <= timedelta(milliseconds=duration_ms)

    async def close(self) -> None:
        """Release any connections. Default: nothing to do."""
        return None
