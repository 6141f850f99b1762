"""
TimerScheduler — one armed timer per active time-based schedule.

Each armed schedule owns a single asyncio.Task, which doubles as its
cancellation token. The task runs an explicit loop rather than re-arming
itself recursively:

    compute next → sleep on the Clock → re-check still armed → fire → repeat

A WAITING outcome re-enters the coordinator after a short recheck sleep
instead of recomputing the schedule. When the calculator returns None, or
a fire (first or recheck) lands after the expiration, the loop ends and
the schedule is dormant until re-armed.

Long sleeps are split into chunks so a suspended laptop or a clock change
is noticed within MAX_SLEEP_SECONDS.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, tzinfo
from typing import Iterable

from cadence.core.bus import EventBus
from cadence.core.clock import Clock
from cadence.core.events import Event, EventType
from cadence.scheduler.calculator import next_execution_time
from cadence.scheduler.coordinator import ExecutionCoordinator, ExecutionOutcome
from cadence.scheduler.schedule import Schedule
from cadence.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

MAX_SLEEP_SECONDS = 3600


class TimerScheduler:
    """
    Arms, re-arms and cancels per-schedule timers.

    Usage:
        timers = TimerScheduler(clock, store, coordinator, tz=tz)
        timers.arm_all(store.all())
        timers.cancel(schedule_id)
        await timers.shutdown()
    """

    def __init__(
        self,
        clock: Clock,
        store: ScheduleStore,
        coordinator: ExecutionCoordinator,
        bus: EventBus | None = None,
        tz: tzinfo | None = None,
        wait_recheck_seconds: float = 60,
    ) -> None:
        self._clock = clock
        self._store = store
        self._coordinator = coordinator
        self._bus = bus or EventBus()
        self._tz = tz
        self._wait_recheck = wait_recheck_seconds
        self._timers: dict[str, asyncio.Task] = {}

    @property
    def armed_ids(self) -> set[str]:
        return {sid for sid, task in self._timers.items() if not task.done()}

    def is_armed(self, schedule_id: str) -> bool:
        task = self._timers.get(schedule_id)
        return task is not None and not task.done()

    # ── Arming ────────────────────────────────────────────────────────────────

    def arm_all(self, schedules: Iterable[Schedule]) -> int:
        """Cancel every timer, then arm each active time-based schedule."""
        self.cancel_all()
        armed = 0
        for schedule in schedules:
            if not schedule.active:
                logger.debug(f"Skipping timer setup for inactive schedule {schedule.name!r}")
                continue
            if self.arm_one(schedule):
                armed += 1
        return armed

    def arm_one(self, schedule: Schedule) -> bool:
        """
        (Re)arm the timer for one schedule.

        Any existing timer for the id is cancelled first. Returns False when
        the schedule is inactive, not time-based, or has no next fire time.
        A fire time at or before now fires on the next loop iteration.
        """
        self.cancel(schedule.id, announce=False)
        if not schedule.is_timer_driven:
            return False

        now = self._clock.now()
        due = self._next_due(schedule, now)
        self._store.set_next_execution(schedule.id, due)
        if due is None:
            self._announce(
                EventType.SCHEDULE_DORMANT,
                f'Schedule "{schedule.name}" has no valid execution time or has expired',
                schedule,
            )
            return False

        task = asyncio.get_running_loop().create_task(
            self._drive(schedule.id, due), name=f"schedule:{schedule.id}"
        )
        self._timers[schedule.id] = task
        task.add_done_callback(lambda t, sid=schedule.id: self._on_done(sid, t))
        self._announce(EventType.SCHEDULE_ARMED, self._armed_message(schedule, due, now), schedule)
        return True

    # ── Cancellation ──────────────────────────────────────────────────────────

    def cancel(self, schedule_id: str, announce: bool = True) -> bool:
        """Cancel the timer (and any wait recheck) for an id. Idempotent."""
        self._coordinator.forget(schedule_id)
        task = self._timers.pop(schedule_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        if announce:
            schedule = self._store.get(schedule_id)
            name = schedule.name if schedule else schedule_id
            self._bus.emit_nowait(
                Event(
                    type=EventType.SCHEDULE_CANCELLED,
                    message=f'Cleared timer for schedule "{name}"',
                    source=f"schedule:{schedule_id}",
                    data={"schedule_id": schedule_id},
                    timestamp=self._clock.now().timestamp(),
                )
            )
        return True

    def cancel_all(self) -> None:
        for schedule_id in list(self._timers):
            self.cancel(schedule_id, announce=False)

    async def shutdown(self) -> None:
        """Cancel every timer and wait for the tasks to unwind."""
        tasks = list(self._timers.values())
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Timer loop ────────────────────────────────────────────────────────────

    async def _drive(self, schedule_id: str, due: datetime) -> None:
        while True:
            await self._sleep_until(due)

            # A deleted or deactivated schedule must not fire, even if this
            # task slipped past cancellation
            schedule = self._store.get(schedule_id)
            if schedule is None or not schedule.is_timer_driven:
                return

            fired_at = self._clock.now()
            if self._expired(schedule, fired_at):
                # A wait recheck can outlive the expiration
                self._coordinator.forget(schedule_id)
                self._store.set_next_execution(schedule_id, None)
                await self._emit(
                    EventType.SCHEDULE_DORMANT,
                    f'Schedule "{schedule.name}" has no valid execution time or has expired',
                    schedule,
                )
                return

            outcome = await self._coordinator.execute(schedule)

            schedule = self._store.get(schedule_id)
            if schedule is None or not schedule.is_timer_driven:
                return

            now = self._clock.now()
            if outcome == ExecutionOutcome.WAITING:
                due = now + timedelta(seconds=self._wait_recheck)
                continue

            due = self._next_due(schedule, now, fired_at)
            self._store.set_next_execution(schedule_id, due)
            if due is None:
                await self._emit(
                    EventType.SCHEDULE_DORMANT,
                    f'Schedule "{schedule.name}" has no valid execution time or has expired',
                    schedule,
                )
                return
            await self._emit(
                EventType.SCHEDULE_ARMED, self._armed_message(schedule, due, now), schedule
            )

    async def _sleep_until(self, due: datetime) -> None:
        while True:
            remaining = (due - self._clock.now()).total_seconds()
            if remaining <= 0:
                return
            await self._clock.sleep(min(remaining, MAX_SLEEP_SECONDS))

    def _next_due(
        self, schedule: Schedule, now: datetime, fired_at: datetime | None = None
    ) -> datetime | None:
        due = next_execution_time(schedule, now, self._tz)
        if due is not None and fired_at is not None and due <= fired_at:
            # The fire left no bookkeeping (inactivity skip, failed run), so the
            # fire itself is the reference for the next interval
            reference = max(t for t in (schedule.last_skipped_time, fired_at) if t)
            due = next_execution_time(schedule.copy(last_skipped_time=reference), now, self._tz)
        return due

    def _expired(self, schedule: Schedule, now: datetime) -> bool:
        expiration = schedule.expiration_datetime(self._tz or now.tzinfo)
        return expiration is not None and now > expiration

    def _on_done(self, schedule_id: str, task: asyncio.Task) -> None:
        if self._timers.get(schedule_id) is task:
            del self._timers[schedule_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Timer for schedule {schedule_id} crashed: {task.exception()}",
                exc_info=task.exception(),
            )

    # ── Events ────────────────────────────────────────────────────────────────

    @staticmethod
    def _armed_message(schedule: Schedule, due: datetime, now: datetime) -> str:
        delay = (due - now).total_seconds()
        if delay <= 0:
            return f'Schedule "{schedule.name}" is due for immediate execution'
        return (
            f'Setting up timer for schedule "{schedule.name}" to execute in '
            f"{int(delay // 60)} minutes (at {due.isoformat()})"
        )

    def _event(self, event_type: str, message: str, schedule: Schedule) -> Event:
        return Event(
            type=event_type,
            message=message,
            source=f"schedule:{schedule.id}",
            data={"schedule_id": schedule.id, "schedule_name": schedule.name},
            timestamp=self._clock.now().timestamp(),
        )

    def _announce(self, event_type: str, message: str, schedule: Schedule) -> None:
        self._bus.emit_nowait(self._event(event_type, message, schedule))

    async def _emit(self, event_type: str, message: str, schedule: Schedule) -> None:
        await self._bus.emit(self._event(event_type, message, schedule))
