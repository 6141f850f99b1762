"""
Schedule — the core data model.

A Schedule describes what to run (mode + task instructions, opaque to the
engine), when to run it (interval + unit, optional weekdays, start and
expiry), how to behave when another task is already running, and the
bookkeeping the engine keeps after each fire.

On disk it is one entry of the schedules document:

    {"schedules": [{"id": "1a2b3c4d", "name": "Nightly review",
                    "mode": "code", "taskInstructions": "...",
                    "scheduleType": "time", "timeInterval": "1",
                    "timeUnit": "day", "startDate": "2025-04-10",
                    "startHour": "09", "startMinute": "00", ...}]}

Numeric fields are stored as strings by the editor; from_dict accepts both.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Any

from cadence.core.errors import ScheduleError

logger = logging.getLogger(__name__)

# Python's weekday(): Monday == 0
WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# Set by the engine or the store, never by whoever creates the schedule
_ENGINE_OWNED_FIELDS = frozenset(
    {
        "id",
        "created_at",
        "updated_at",
        "last_execution_time",
        "last_skipped_time",
        "last_task_id",
        "next_execution_time",
    }
)


class ScheduleType(str, Enum):
    """What triggers the schedule."""

    TIME = "time"
    COMPLETION = "completion"  # fired by another task finishing, not by a timer


class TimeUnit(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


class TaskInteraction(str, Enum):
    """Policy when a fire arrives while another task is running."""

    WAIT = "wait"
    INTERRUPT = "interrupt"
    SKIP = "skip"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_instant(value: Any) -> datetime | None:
    """Parse an ISO-8601 instant; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Ignoring unparseable timestamp {value!r}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_instant(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _enum_or(enum_cls: type[Enum], value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(f"Unknown {enum_cls.__name__} value {value!r}, using {default!r}")
        return default


@dataclass
class Schedule:
    """A recurring job configuration plus its execution bookkeeping."""

    name: str
    mode: str
    task_instructions: str

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    mode_display_name: str | None = None
    schedule_type: ScheduleType = ScheduleType.TIME

    # Recurrence
    time_interval: int | None = None
    time_unit: TimeUnit | None = None
    selected_days: dict[str, bool] | None = None
    start_date: str | None = None       # YYYY-MM-DD
    start_hour: int = 0
    start_minute: int = 0
    expiration_date: str | None = None  # YYYY-MM-DD
    expiration_hour: int = 23
    expiration_minute: int = 59

    # Gating and conflict policy
    require_activity: bool = False
    task_interaction: TaskInteraction = TaskInteraction.WAIT
    inactivity_delay: int = 10  # minutes
    active: bool = True

    # Bookkeeping, written only by the execution coordinator
    last_execution_time: datetime | None = None
    last_skipped_time: datetime | None = None
    last_task_id: str | None = None
    next_execution_time: datetime | None = None

    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def new(cls, name: str, mode: str, task_instructions: str, **kwargs: Any) -> "Schedule":
        """
        Create a schedule as the editor does: fresh id, fresh stamps, no history.

        Raises ScheduleError if the caller supplies an id, creation stamps or
        execution bookkeeping.
        """
        reserved = sorted(set(kwargs) & _ENGINE_OWNED_FIELDS)
        if reserved:
            raise ScheduleError(f"Cannot set {', '.join(reserved)} on a new schedule")
        return cls(name=name, mode=mode, task_instructions=task_instructions, **kwargs)

    # ── Derived views ─────────────────────────────────────────────────────────

    @property
    def is_timer_driven(self) -> bool:
        """Only active time-based schedules get a timer."""
        return self.active and self.schedule_type == ScheduleType.TIME

    @property
    def has_day_restriction(self) -> bool:
        return bool(self.selected_days) and any(self.selected_days.values())

    def start_datetime(self, tz: tzinfo) -> datetime | None:
        """Earliest permitted first execution, as a wall-clock time in tz."""
        if not self.start_date:
            return None
        try:
            d = date.fromisoformat(self.start_date)
        except ValueError:
            logger.warning(f"Schedule {self.name!r} has invalid startDate {self.start_date!r}")
            return None
        return datetime(d.year, d.month, d.day, self.start_hour, self.start_minute, tzinfo=tz)

    def expiration_datetime(self, tz: tzinfo) -> datetime | None:
        """Last instant at which the schedule may fire (inclusive of the minute)."""
        if not self.expiration_date:
            return None
        try:
            d = date.fromisoformat(self.expiration_date)
        except ValueError:
            logger.warning(
                f"Schedule {self.name!r} has invalid expirationDate {self.expiration_date!r}"
            )
            return None
        return datetime(
            d.year, d.month, d.day, self.expiration_hour, self.expiration_minute, 59, tzinfo=tz
        )

    def last_reference_time(self) -> datetime | None:
        """The later of last execution and last skip."""
        stamps = [t for t in (self.last_execution_time, self.last_skipped_time) if t]
        return max(stamps) if stamps else None

    def copy(self, **changes: Any) -> "Schedule":
        return replace(self, **changes)

    # ── Serialisation ─────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "mode": self.mode,
            "taskInstructions": self.task_instructions,
            "scheduleType": self.schedule_type.value,
            "timeInterval": str(self.time_interval) if self.time_interval is not None else None,
            "timeUnit": self.time_unit.value if self.time_unit else None,
            "selectedDays": dict(self.selected_days) if self.selected_days is not None else None,
            "startDate": self.start_date,
            "startHour": f"{self.start_hour:02d}",
            "startMinute": f"{self.start_minute:02d}",
            "expirationDate": self.expiration_date,
            "expirationHour": f"{self.expiration_hour:02d}",
            "expirationMinute": f"{self.expiration_minute:02d}",
            "requireActivity": self.require_activity,
            "taskInteraction": self.task_interaction.value,
            "inactivityDelay": str(self.inactivity_delay),
            "active": self.active,
            "lastExecutionTime": format_instant(self.last_execution_time),
            "lastSkippedTime": format_instant(self.last_skipped_time),
            "lastTaskId": self.last_task_id,
            "nextExecutionTime": format_instant(self.next_execution_time),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.mode_display_name:
            d["modeDisplayName"] = self.mode_display_name
        # The editor omits unset optional keys; do the same
        return {k: v for k, v in d.items() if v is not None}

    @classmethod
    def from_dict(cls, d: dict) -> "Schedule":
        now = utc_now_iso()
        start_hour = _int_or_none(d.get("startHour"))
        start_minute = _int_or_none(d.get("startMinute"))
        exp_hour = _int_or_none(d.get("expirationHour"))
        exp_minute = _int_or_none(d.get("expirationMinute"))
        inactivity = _int_or_none(d.get("inactivityDelay"))
        selected = d.get("selectedDays")
        return cls(
            id=str(d["id"]),
            name=d.get("name", ""),
            mode=d.get("mode", ""),
            mode_display_name=d.get("modeDisplayName") or None,
            task_instructions=d.get("taskInstructions", ""),
            schedule_type=_enum_or(ScheduleType, d.get("scheduleType"), ScheduleType.TIME),
            time_interval=_int_or_none(d.get("timeInterval")),
            time_unit=_enum_or(TimeUnit, d.get("timeUnit"), None),
            selected_days={str(k): bool(v) for k, v in selected.items()} if selected else None,
            start_date=d.get("startDate") or None,
            start_hour=start_hour if start_hour is not None else 0,
            start_minute=start_minute if start_minute is not None else 0,
            expiration_date=d.get("expirationDate") or None,
            expiration_hour=exp_hour if exp_hour is not None else 23,
            expiration_minute=exp_minute if exp_minute is not None else 59,
            require_activity=bool(d.get("requireActivity", False)),
            task_interaction=_enum_or(
                TaskInteraction, d.get("taskInteraction"), TaskInteraction.WAIT
            ),
            inactivity_delay=inactivity if inactivity is not None else 10,
            # Entries written before the toggle existed have no "active" key
            active=d.get("active") is not False,
            last_execution_time=parse_instant(d.get("lastExecutionTime")),
            last_skipped_time=parse_instant(d.get("lastSkippedTime")),
            last_task_id=d.get("lastTaskId") or None,
            next_execution_time=parse_instant(d.get("nextExecutionTime")),
            created_at=d.get("createdAt") or now,
            updated_at=d.get("updatedAt") or now,
        )


SCHEDULE_FIELDS = frozenset(f.name for f in fields(Schedule))
