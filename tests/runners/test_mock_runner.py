"""Tests for the scripted MockTaskRunner."""

from datetime import datetime, timezone

import pytest

from cadence.core.errors import RunnerUnavailableError, ValidationError
from cadence.runners.mock import MockTaskRunner


@pytest.mark.asyncio
class TestMockTaskRunner:
    async def test_records_starts(self):
        runner = MockTaskRunner()
        assert await runner.start_task("code", "one") == "mock-task-1"
        assert await runner.start_task("ask", "two") == "mock-task-2"
        assert runner.started == [("code", "one"), ("ask", "two")]

    async def test_valid_modes(self):
        runner = MockTaskRunner(valid_modes={"code"})
        with pytest.raises(ValidationError):
            await runner.start_task("architect", "x")
        assert runner.started == []

    async def test_fail_next_only_once(self):
        runner = MockTaskRunner()
        runner.fail_next(RunnerUnavailableError("not ready"))
        with pytest.raises(RunnerUnavailableError):
            await runner.start_task("code", "x")
        assert await runner.start_task("code", "x") == "mock-task-1"

    async def test_active_task_and_interrupt(self):
        stamp = datetime(2025, 4, 11, 10, tzinfo=timezone.utc)
        runner = MockTaskRunner()
        runner.set_active(True, last_activity=stamp)

        assert await runner.has_active_task()
        assert await runner.last_activity_for_active_task() == stamp
        assert await runner.interrupt_active_task() is True
        assert not await runner.has_active_task()
        assert await runner.interrupt_active_task() is False
        assert runner.interrupt_count == 1
        assert runner.active_checks == 2
