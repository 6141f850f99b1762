"""Shared test fixtures for Cadence."""

from datetime import datetime, timezone

import pytest

from cadence.core.bus import EventBus
from cadence.core.clock import ManualClock
from cadence.core.config import CadenceConfig
from cadence.runners.mock import MockTaskRunner
from cadence.scheduler.activity import ActivityTracker
from cadence.scheduler.schedule import Schedule, TimeUnit
from cadence.scheduler.store import InMemoryPersistence, ScheduleStore

# Friday 2025-04-11 10:00 UTC, the reference "now" for most tests
NOW = datetime(2025, 4, 11, 10, 0, tzinfo=timezone.utc)


def at(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """UTC instant shorthand."""
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return CadenceConfig()


@pytest.fixture
def clock():
    """Virtual clock parked at NOW."""
    return ManualClock(NOW)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def runner():
    return MockTaskRunner()


@pytest.fixture
def activity(clock):
    return ActivityTracker(clock)


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def store(persistence):
    return ScheduleStore(persistence)


@pytest.fixture
def make_schedule():
    """Factory for a daily 09:00 schedule starting 2025-04-10, with overrides."""

    def _make(**overrides) -> Schedule:
        fields = dict(
            id="schedule1",
            name="Daily Task",
            mode="code",
            task_instructions="Run daily task",
            time_interval=1,
            time_unit=TimeUnit.DAY,
            start_date="2025-04-10",
            start_hour=9,
            start_minute=0,
        )
        fields.update(overrides)
        return Schedule(**fields)

    return _make


@pytest.fixture
def events(bus):
    """Every event emitted on the bus, in order."""
    received = []

    async def collect(event):
        received.append(event)

    bus.on("*", collect)
    return received
