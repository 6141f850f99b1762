"""
Mock TaskRunner — for testing and dry runs.

Starts nothing. Tracks every call for test assertions and can be scripted
to report a busy runner or to fail the next start.
"""

from __future__ import annotations

import itertools
from datetime import datetime

from cadence.core.errors import ValidationError
from cadence.runners.base import TaskRunner


class MockTaskRunner(TaskRunner):
    """
    Scripted task runner.

    Usage in tests:
        runner = MockTaskRunner()
        runner.set_active(True)               # another task is running
        runner.fail_next(RunnerUnavailableError("not ready"))

        task_id = await runner.start_task("code", "Run checks")
        assert runner.started == [("code", "Run checks")]
    """

    def __init__(self, valid_modes: set[str] | None = None) -> None:
        self._valid_modes = valid_modes
        self._active = False
        self._active_last_activity: datetime | None = None
        self._failures: list[Exception] = []
        self._ids = itertools.count(1)

        # Call tracking
        self.started: list[tuple[str, str]] = []
        self.interrupt_count = 0
        self.active_checks = 0

    # ── Scripting ────────────────────────────────────────────────────────────

    def set_active(self, active: bool, last_activity: datetime | None = None) -> None:
        """Report (or stop reporting) a running task."""
        self._active = active
        self._active_last_activity = last_activity if active else None

    def fail_next(self, error: Exception) -> None:
        """Raise `error` from the next start_task() call."""
        self._failures.append(error)

    # ── TaskRunner ───────────────────────────────────────────────────────────

    async def start_task(self, mode: str, instructions: str) -> str:
        if self._failures:
            raise self._failures.pop(0)
        if self._valid_modes is not None and mode not in self._valid_modes:
            raise ValidationError(f"Invalid mode: {mode}", mode=mode)
        self.started.append((mode, instructions))
        return f"mock-task-{next(self._ids)}"

    async def has_active_task(self) -> bool:
        self.active_checks += 1
        return self._active

    async def interrupt_active_task(self) -> bool:
        if not self._active:
            return False
        self.interrupt_count += 1
        self.set_active(False)
        return True

    async def last_activity_for_active_task(self) -> datetime | None:
        return self._active_last_activity
