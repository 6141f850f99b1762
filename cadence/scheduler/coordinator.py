"""
ExecutionCoordinator — decides what happens when a schedule's timer fires.

Decision order for one fire:
  1. requireActivity and no user activity since the last execution
     → skip quietly (bookkeeping untouched)
  2. task-interaction policy when the runner already has a task:
       skip      → record lastSkippedTime, do not run
       interrupt → cancel the running task, then run
       wait      → report WAITING; the timer re-checks on a short cadence
                   until the runner is idle and inactivityDelay minutes
                   have passed since the last observed activity
  3. run: start the task, record lastExecutionTime and lastTaskId

Nothing raised here escapes execute().
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from cadence.core.bus import EventBus
from cadence.core.clock import Clock
from cadence.core.errors import (
    PersistenceError,
    RunnerUnavailableError,
    TaskRunnerError,
    ValidationError,
)
from cadence.core.events import Event, EventType
from cadence.runners.base import TaskRunner
from cadence.scheduler.activity import ActivityTracker
from cadence.scheduler.schedule import Schedule, TaskInteraction
from cadence.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ExecutionOutcome(str, Enum):
    """Result of one fire."""

    EXECUTED = "executed"
    SKIPPED_NO_ACTIVITY = "skipped_no_activity"
    SKIPPED_POLICY = "skipped_policy"
    WAITING = "waiting"
    FAILED = "failed"
    ABANDONED = "abandoned"  # inactive or deleted by the time it fired


class ExecutionCoordinator:
    """
    Policy engine invoked by the TimerScheduler on every fire.

    Wait-policy state is kept per schedule id: the last task activity seen
    while waiting. forget() drops it when a schedule is cancelled.
    """

    def __init__(
        self,
        clock: Clock,
        runner: TaskRunner,
        store: ScheduleStore,
        activity: ActivityTracker,
        bus: EventBus | None = None,
        known_modes: set[str] | None = None,
    ) -> None:
        self._clock = clock
        self._runner = runner
        self._store = store
        self._activity = activity
        self._bus = bus or EventBus()
        self._known_modes = known_modes or None
        self._waiting: dict[str, datetime] = {}

    def is_waiting(self, schedule_id: str) -> bool:
        return schedule_id in self._waiting

    def forget(self, schedule_id: str) -> None:
        """Drop any in-flight wait state for a cancelled schedule."""
        self._waiting.pop(schedule_id, None)

    async def execute(self, schedule: Schedule) -> ExecutionOutcome:
        try:
            return await self._execute(schedule)
        except Exception as e:
            logger.warning(f"Schedule {schedule.name!r} unexpected error: {e}", exc_info=e)
            await self._emit(
                EventType.SCHEDULE_FAILED,
                f'Error executing schedule "{schedule.name}": {e}',
                schedule,
                error=str(e),
            )
            return ExecutionOutcome.FAILED

    # ── Decision procedure ────────────────────────────────────────────────────

    async def _execute(self, fired: Schedule) -> ExecutionOutcome:
        schedule = self._store.get(fired.id)
        if schedule is None or not schedule.active:
            self.forget(fired.id)
            await self._emit(
                EventType.SCHEDULE_SKIPPED,
                f'Skipping execution of inactive schedule "{fired.name}"',
                fired,
                reason="inactive",
            )
            return ExecutionOutcome.ABANDONED

        if schedule.id in self._waiting:
            return await self._recheck_wait(schedule)

        await self._emit(EventType.SCHEDULE_FIRED, f'Executing schedule "{schedule.name}"', schedule)

        if schedule.require_activity:
            last_run = schedule.last_execution_time or EPOCH
            if self._activity.last_activity_time() <= last_run:
                await self._emit(
                    EventType.SCHEDULE_SKIPPED,
                    f'Skipping execution of "{schedule.name}" due to no activity since last execution',
                    schedule,
                    reason="no_activity",
                )
                return ExecutionOutcome.SKIPPED_NO_ACTIVITY

        policy = schedule.task_interaction
        if policy == TaskInteraction.SKIP:
            if await self._runner.has_active_task():
                return await self._skip_for_policy(schedule)
        elif policy == TaskInteraction.INTERRUPT:
            if await self._runner.has_active_task():
                interrupted = await self._runner.interrupt_active_task()
                await self._emit(
                    EventType.SCHEDULE_INTERRUPTED,
                    f'Interrupted the active task to run "{schedule.name}"',
                    schedule,
                    interrupted=interrupted,
                )
        elif policy == TaskInteraction.WAIT:
            if await self._runner.has_active_task():
                self._waiting[schedule.id] = await self._observed_task_activity()
                await self._emit(
                    EventType.SCHEDULE_WAITING,
                    f'A task is running; "{schedule.name}" will run after '
                    f"{schedule.inactivity_delay} minutes of inactivity",
                    schedule,
                    inactivity_delay=schedule.inactivity_delay,
                )
                return ExecutionOutcome.WAITING

        return await self._run(schedule)

    async def _recheck_wait(self, schedule: Schedule) -> ExecutionOutcome:
        if await self._runner.has_active_task():
            self._waiting[schedule.id] = max(
                self._waiting[schedule.id], await self._observed_task_activity()
            )
            logger.debug(f"Schedule {schedule.name!r} still waiting for the active task")
            return ExecutionOutcome.WAITING

        last_seen = max(self._waiting[schedule.id], self._activity.last_activity_time())
        idle_for = self._clock.now() - last_seen
        if idle_for < timedelta(minutes=schedule.inactivity_delay):
            logger.debug(
                f"Schedule {schedule.name!r} idle for {idle_for}, "
                f"needs {schedule.inactivity_delay} minutes"
            )
            return ExecutionOutcome.WAITING

        self._waiting.pop(schedule.id, None)
        await self._emit(
            EventType.SCHEDULE_FIRED,
            f'Inactivity period elapsed, executing schedule "{schedule.name}"',
            schedule,
        )
        return await self._run(schedule)

    async def _observed_task_activity(self) -> datetime:
        stamp = await self._runner.last_activity_for_active_task()
        return stamp or self._clock.now()

    async def _skip_for_policy(self, schedule: Schedule) -> ExecutionOutcome:
        now = self._clock.now()
        await self._persist(schedule, last_skipped_time=now)
        await self._emit(
            EventType.SCHEDULE_SKIPPED,
            f'Skipping "{schedule.name}" because another task is already running',
            schedule,
            reason="task_active",
        )
        return ExecutionOutcome.SKIPPED_POLICY

    async def _run(self, schedule: Schedule) -> ExecutionOutcome:
        try:
            if self._known_modes is not None and schedule.mode not in self._known_modes:
                raise ValidationError(f"Invalid mode: {schedule.mode}", mode=schedule.mode)
            task_id = await self._runner.start_task(schedule.mode, schedule.task_instructions)
        except ValidationError as e:
            return await self._fail(schedule, e, "validation")
        except RunnerUnavailableError as e:
            return await self._fail(schedule, e, "runner_unavailable")
        except TaskRunnerError as e:
            return await self._fail(schedule, e, "runner_error")

        await self._persist(schedule, last_execution_time=self._clock.now(), last_task_id=task_id)
        await self._emit(
            EventType.SCHEDULE_EXECUTED,
            f'Successfully started task with mode "{schedule.mode}" for "{schedule.name}"',
            schedule,
            task_id=task_id,
        )
        return ExecutionOutcome.EXECUTED

    async def _fail(self, schedule: Schedule, error: Exception, kind: str) -> ExecutionOutcome:
        logger.warning(f"Schedule {schedule.name!r} failed ({kind}): {error}")
        await self._emit(
            EventType.SCHEDULE_FAILED,
            f'Error executing schedule "{schedule.name}": {error}',
            schedule,
            error=str(error),
            kind=kind,
        )
        return ExecutionOutcome.FAILED

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _persist(self, schedule: Schedule, **changes: Any) -> None:
        try:
            await self._store.update(schedule.id, **changes)
        except PersistenceError as e:
            # In-memory state already holds the change; disk catches up on the next write
            logger.error(f"Failed to persist schedule {schedule.name!r}: {e}")
            await self._emit(
                EventType.STORE_ERROR,
                f"Error saving schedules: {e}",
                schedule,
                error=str(e),
            )

    async def _emit(self, event_type: str, message: str, schedule: Schedule, **data: Any) -> None:
        await self._bus.emit(
            Event(
                type=event_type,
                message=message,
                source=f"schedule:{schedule.id}",
                data={"schedule_id": schedule.id, "schedule_name": schedule.name, **data},
                timestamp=self._clock.now().timestamp(),
            )
        )
