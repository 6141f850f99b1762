"""
Next-execution-time calculation — a pure function of (schedule, now).

Usage:
    nxt = next_execution_time(schedule, now=clock.now())
    if nxt is None:
        ...  # dormant: not configured, expired, or no permitted weekday

Rules:
- before startDateTime the start itself is next
- after a run or skip, next = reference + one interval
- with no prior run and a start in the past, jump forward by whole
  periods so an offline process does not fire a burst of catch-ups
- weekday restriction snaps forward to the next permitted day at the
  schedule's start hour/minute, searching at most 7 days
- minute/hour steps are absolute durations; day steps are calendar days
  on the schedule's wall clock, so 09:00 stays 09:00 across DST changes
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone, tzinfo

from cadence.scheduler.schedule import WEEKDAY_KEYS, Schedule, TimeUnit

_UNIT_SECONDS = {
    TimeUnit.MINUTE: 60,
    TimeUnit.HOUR: 3600,
    TimeUnit.DAY: 86400,
}


def interval_delta(value: int, unit: TimeUnit) -> timedelta:
    """Nominal duration of `value` units (a day counts as 24h)."""
    return timedelta(seconds=value * _UNIT_SECONDS[unit])


def add_interval(instant: datetime, value: int, unit: TimeUnit) -> datetime:
    """Advance an aware instant by `value` units."""
    if unit == TimeUnit.DAY:
        # Wall-clock addition, then normalise the UTC offset for the new date
        shifted = instant + timedelta(days=value)
        return shifted.astimezone(timezone.utc).astimezone(instant.tzinfo)
    utc = instant.astimezone(timezone.utc) + interval_delta(value, unit)
    return utc.astimezone(instant.tzinfo)


def next_execution_time(
    schedule: Schedule,
    now: datetime,
    tz: tzinfo | None = None,
) -> datetime | None:
    """
    Compute the next instant at which `schedule` should fire.

    Args:
        schedule: The schedule (bookkeeping fields included).
        now:      Current aware instant.
        tz:       Zone the schedule's wall-clock fields are written in
                  (defaults to now's zone).

    Returns:
        An aware datetime in `tz`, or None when the schedule cannot fire.
    """
    tz = tz or now.tzinfo
    interval = schedule.time_interval
    unit = schedule.time_unit
    start = schedule.start_datetime(tz)
    if not interval or interval < 1 or unit is None or start is None:
        return None

    expiration = schedule.expiration_datetime(tz)
    if expiration is not None and now > expiration:
        return None

    if now < start:
        candidate = start
    else:
        prior = schedule.last_reference_time()
        if prior is not None and prior >= start:
            candidate = add_interval(prior.astimezone(tz), interval, unit)
        else:
            # No prior run since the (possibly edited) start: catch up in one jump
            candidate = _first_period_at_or_after(start, now, interval, unit)

    if schedule.selected_days is not None and len(schedule.selected_days) > 0:
        if not any(schedule.selected_days.values()):
            return None
        candidate = _snap_to_selected_day(candidate, schedule)
        if candidate is None:
            return None

    if expiration is not None and candidate > expiration:
        return None
    return candidate


def _first_period_at_or_after(
    start: datetime, now: datetime, interval: int, unit: TimeUnit
) -> datetime:
    step = interval_delta(interval, unit).total_seconds()
    elapsed = (now - start).total_seconds()
    # One period short of the estimate, then step: DST days are not 24h long
    periods = max(0, math.ceil(elapsed / step) - 1)
    candidate = add_interval(start, interval * periods, unit)
    while candidate < now:
        candidate = add_interval(candidate, interval, unit)
    return candidate


def _snap_to_selected_day(candidate: datetime, schedule: Schedule) -> datetime | None:
    days = schedule.selected_days or {}
    for _ in range(7):
        if days.get(WEEKDAY_KEYS[candidate.weekday()]):
            return candidate
        next_day = candidate.date() + timedelta(days=1)
        candidate = datetime(
            next_day.year,
            next_day.month,
            next_day.day,
            schedule.start_hour,
            schedule.start_minute,
            tzinfo=candidate.tzinfo,
        )
    return None


def describe_recurrence(schedule: Schedule) -> str:
    """Human-readable cadence, e.g. 'every 2 hours on mon, wed'."""
    if not schedule.time_interval or schedule.time_unit is None:
        return "not scheduled"
    n = schedule.time_interval
    unit = schedule.time_unit.value
    text = f"every {unit}" if n == 1 else f"every {n} {unit}s"
    if schedule.has_day_restriction:
        chosen = [k for k in WEEKDAY_KEYS if (schedule.selected_days or {}).get(k)]
        text += " on " + ", ".join(chosen)
    return text
