"""
SchedulerEngine — composes the scheduling core around injected collaborators.

    store ──▶ TimerScheduler ──fire──▶ ExecutionCoordinator ──▶ TaskRunner
      ▲              ▲                          │
      └──────────────┴───── bookkeeping ◀───────┘

There is no global instance: construct one engine per process with the
Clock, TaskRunner and ScheduleStore it should use. Tests pass a
ManualClock and a MockTaskRunner.

Usage:
    engine = SchedulerEngine(store=store, runner=runner)
    await engine.start()
    ...
    await engine.toggle_active(schedule_id, False)
    await engine.stop()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from cadence.core.bus import EventBus
from cadence.core.clock import Clock, SystemClock
from cadence.core.config import SchedulerConfig
from cadence.core.errors import PersistenceError
from cadence.core.events import Event, EventType
from cadence.runners.base import TaskRunner
from cadence.scheduler.activity import ActivityTracker
from cadence.scheduler.calculator import next_execution_time
from cadence.scheduler.coordinator import ExecutionCoordinator
from cadence.scheduler.schedule import Schedule
from cadence.scheduler.store import ScheduleStore
from cadence.scheduler.timers import TimerScheduler

logger = logging.getLogger(__name__)


class SchedulerEngine:
    """The scheduling core: timers, execution policy and activity gating."""

    def __init__(
        self,
        store: ScheduleStore,
        runner: TaskRunner,
        clock: Clock | None = None,
        activity: ActivityTracker | None = None,
        bus: EventBus | None = None,
        config: SchedulerConfig | None = None,
    ) -> None:
        self._config = config or SchedulerConfig()
        zone = ZoneInfo(self._config.timezone) if self._config.timezone else None
        self._clock = clock or SystemClock(zone)
        self._tz = zone or self._clock.now().tzinfo
        self._store = store
        self._runner = runner
        self._bus = bus or EventBus()
        self._activity = activity or ActivityTracker(self._clock)
        self._coordinator = ExecutionCoordinator(
            clock=self._clock,
            runner=runner,
            store=store,
            activity=self._activity,
            bus=self._bus,
            known_modes=set(self._config.known_modes) or None,
        )
        self._timers = TimerScheduler(
            clock=self._clock,
            store=store,
            coordinator=self._coordinator,
            bus=self._bus,
            tz=self._tz,
            wait_recheck_seconds=self._config.wait_recheck_seconds,
        )
        self._running = False

    # ── Accessors ─────────────────────────────────────────────────────────────

    @property
    def store(self) -> ScheduleStore:
        return self._store

    @property
    def timers(self) -> TimerScheduler:
        return self._timers

    @property
    def activity(self) -> ActivityTracker:
        return self._activity

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Load schedules, arm their timers and listen for reload signals."""
        if self._running:
            return
        self._running = True
        await self._emit(EventType.SYSTEM_START, "Scheduler starting")
        self._bus.on(EventType.SCHEDULES_UPDATED, self._on_schedules_updated)
        await self._load_and_arm()

    async def stop(self) -> None:
        """Cancel every timer."""
        if not self._running:
            return
        self._running = False
        self._bus.off(EventType.SCHEDULES_UPDATED, self._on_schedules_updated)
        await self._timers.shutdown()
        await self._emit(EventType.SYSTEM_STOP, "Scheduler stopped")

    async def reload(self) -> None:
        """Reload the schedule list from persistence and re-arm all timers."""
        await self._emit(
            EventType.SCHEDULES_LOADED,
            "Reloading schedules and rescheduling timers due to external update",
        )
        await self._load_and_arm()

    async def notify_schedules_updated(self) -> None:
        """Entry point for the external "schedules updated" signal."""
        await self._bus.emit(Event(type=EventType.SCHEDULES_UPDATED, source="engine"))

    async def _on_schedules_updated(self, event: Event) -> None:
        await self.reload()

    async def _load_and_arm(self) -> None:
        try:
            schedules = await self._store.load()
            await self._emit(EventType.SCHEDULES_LOADED, f"Loaded {len(schedules)} schedules")
        except PersistenceError as e:
            # Keep the last good list and its timers
            logger.error(f"Error loading schedules: {e}")
            await self._emit(EventType.STORE_ERROR, f"Error loading schedules: {e}")
        self._timers.arm_all(self._store.all())

    # ── Schedule management ───────────────────────────────────────────────────

    async def toggle_active(self, schedule_id: str, active: bool) -> Schedule | None:
        """
        Activate or deactivate a schedule.

        Activation arms the timer; deactivation cancels it along with any
        pending wait-policy recheck. Returns the schedule, or None if the id
        is unknown.
        """
        schedule = self._store.get(schedule_id)
        if schedule is None:
            await self._emit(EventType.SCHEDULE_TOGGLED, f"Schedule with ID {schedule_id} not found.")
            return None
        if schedule.active == active:
            state = "active" if active else "inactive"
            await self._emit(
                EventType.SCHEDULE_TOGGLED, f'Schedule "{schedule.name}" is already {state}.'
            )
            return schedule

        if not active:
            self._timers.cancel(schedule_id)
        updated = await self._update(schedule_id, active=active)
        if updated is None:
            return None
        if active:
            self._timers.arm_one(updated)
            message = f'Activated schedule "{updated.name}" and scheduled next task.'
        else:
            message = f'Deactivated schedule "{updated.name}" and cleared timer.'
        await self._emit(EventType.SCHEDULE_TOGGLED, message, schedule_id=schedule_id, active=active)
        return self._store.get(schedule_id)

    async def add_schedule(self, schedule: Schedule) -> Schedule:
        """Persist a new schedule and arm it if it is timer-driven."""
        try:
            await self._store.add(schedule)
        except PersistenceError as e:
            logger.error(f"Error saving schedules: {e}")
            await self._emit(EventType.STORE_ERROR, f"Error saving schedules: {e}")
        self._timers.arm_one(schedule)
        return schedule

    async def update_schedule(self, schedule_id: str, **changes: Any) -> Schedule | None:
        """Apply edits to a schedule and re-arm it from its new settings."""
        updated = await self._update(schedule_id, **changes)
        if updated is not None:
            self._timers.arm_one(updated)
        return updated

    async def delete_schedule(self, schedule_id: str) -> bool:
        """Cancel a schedule's timer, then remove it from the store."""
        self._timers.cancel(schedule_id)
        try:
            return await self._store.remove(schedule_id)
        except PersistenceError as e:
            logger.error(f"Error saving schedules: {e}")
            await self._emit(EventType.STORE_ERROR, f"Error saving schedules: {e}")
            return True

    def record_activity(self, now: datetime | None = None) -> datetime:
        """Forward a user-activity signal to the tracker."""
        return self._activity.record_activity(now)

    def next_execution(self, schedule_id: str) -> datetime | None:
        """Projected next fire time for a schedule, computed now."""
        schedule = self._store.get(schedule_id)
        if schedule is None or not schedule.is_timer_driven:
            return None
        return next_execution_time(schedule, self._clock.now(), self._tz)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _update(self, schedule_id: str, **changes: Any) -> Schedule | None:
        try:
            return await self._store.update(schedule_id, **changes)
        except PersistenceError as e:
            logger.error(f"Error saving schedules: {e}")
            await self._emit(EventType.STORE_ERROR, f"Error saving schedules: {e}")
            return self._store.get(schedule_id)

    async def _emit(self, event_type: str, message: str, **data: Any) -> None:
        await self._bus.emit(
            Event(
                type=event_type,
                message=message,
                source="engine",
                data=data,
                timestamp=self._clock.now().timestamp(),
            )
        )
