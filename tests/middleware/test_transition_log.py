"""Tests for logging setup and the schedule transition log."""

import json
import logging
from datetime import datetime, timezone

import pytest

from cadence.core.bus import EventBus
from cadence.core.events import Event, EventType
from cadence.middleware.logging import TransitionLog, setup_logging

TS = datetime(2025, 4, 11, 10, 0, tzinfo=timezone.utc).timestamp()


@pytest.mark.asyncio
async def test_lines_are_timestamped(tmp_path):
    log = TransitionLog(log_dir=tmp_path)
    bus = EventBus()
    bus.use(log.middleware)

    await bus.emit(Event(type=EventType.SCHEDULE_FIRED, message='Executing schedule "Nightly"', timestamp=TS))

    assert log.lines == ['[2025-04-11T10:00:00+00:00] Executing schedule "Nightly"']
    assert log.log_file.read_text().splitlines() == log.lines


@pytest.mark.asyncio
async def test_events_jsonl_written(tmp_path):
    log = TransitionLog(log_dir=tmp_path)
    bus = EventBus()
    bus.use(log.middleware)

    await bus.emit(
        Event(
            type=EventType.SCHEDULE_EXECUTED,
            message="done",
            data={"schedule_id": "a", "when": datetime(2025, 4, 11, tzinfo=timezone.utc)},
            timestamp=TS,
        )
    )

    [events_file] = tmp_path.glob("events_*.jsonl")
    record = json.loads(events_file.read_text().splitlines()[0])
    assert record["type"] == "schedule:executed"
    assert record["data"]["schedule_id"] == "a"
    assert record["data"]["when"].startswith("2025-04-11")


@pytest.mark.asyncio
async def test_events_without_message_are_not_lines(tmp_path):
    log = TransitionLog(log_dir=tmp_path, write_events=False)
    bus = EventBus()
    bus.use(log.middleware)
    received = []

    async def handler(event):
        received.append(event)

    bus.on("*", handler)
    await bus.emit(Event(type=EventType.SCHEDULES_UPDATED))

    assert log.lines == []
    assert len(received) == 1
    assert list(tmp_path.glob("events_*.jsonl")) == []


@pytest.mark.asyncio
async def test_memory_only_log_is_bounded():
    log = TransitionLog(max_lines=2)
    bus = EventBus()
    bus.use(log.middleware)
    for i in range(3):
        await bus.emit(Event(type=EventType.SCHEDULE_ARMED, message=f"m{i}", timestamp=TS))

    assert [line.split("] ")[1] for line in log.lines] == ["m1", "m2"]
    assert log.log_file is None


def test_setup_logging_writes_file(tmp_path):
    logger = setup_logging(log_dir=tmp_path, console_level=logging.ERROR)
    logging.getLogger("cadence.scheduler.timers").debug("armed")
    for handler in logger.handlers:
        handler.flush()

    [log_file] = tmp_path.glob("cadence_*.log")
    assert "armed" in log_file.read_text()
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
