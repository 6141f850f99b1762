"""
Cadence — recurring task scheduling for agent hosts.

Public API:
    from cadence import SchedulerEngine, Schedule, ScheduleStore
"""

__version__ = "0.1.0"

# Core
from cadence.core.bus import EventBus
from cadence.core.clock import Clock, ManualClock, SystemClock
from cadence.core.config import CadenceConfig, SchedulerConfig
from cadence.core.events import Event, EventType

# Scheduling
from cadence.scheduler.activity import ActivityTracker
from cadence.scheduler.calculator import next_execution_time
from cadence.scheduler.coordinator import ExecutionCoordinator, ExecutionOutcome
from cadence.scheduler.engine import SchedulerEngine
from cadence.scheduler.schedule import Schedule, ScheduleType, TaskInteraction, TimeUnit
from cadence.scheduler.store import (
    InMemoryPersistence,
    JsonFilePersistence,
    SchedulePersistence,
    ScheduleStore,
)
from cadence.scheduler.timers import TimerScheduler

# Runners
from cadence.runners.base import TaskRunner

__all__ = [
    # Core
    "EventBus",
    "Clock",
    "ManualClock",
    "SystemClock",
    "CadenceConfig",
    "SchedulerConfig",
    "Event",
    "EventType",
    # Scheduling
    "ActivityTracker",
    "next_execution_time",
    "ExecutionCoordinator",
    "ExecutionOutcome",
    "SchedulerEngine",
    "Schedule",
    "ScheduleType",
    "TaskInteraction",
    "TimeUnit",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "SchedulePersistence",
    "ScheduleStore",
    "TimerScheduler",
    # Runners
    "TaskRunner",
]
