"""
ActivityTracker — remembers when the user was last active.

Editor focus, document edits and window focus are reported by the host
integration through record_activity(). Nothing is persisted; a restart
starts the clock over from process start.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from cadence.core.clock import Clock


class ActivityTracker:
    """Point-in-time queries over the most recent user-activity signal."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._last_activity = clock.now()

    def record_activity(self, now: datetime | None = None) -> datetime:
        """Stamp an activity signal. Returns the recorded instant."""
        stamp = now or self._clock.now()
        # Out-of-order signals must not move the stamp backwards
        if stamp > self._last_activity:
            self._last_activity = stamp
        return self._last_activity

    def last_activity_time(self) -> datetime:
        return self._last_activity

    def is_within_duration(self, duration_ms: float) -> bool:
        """True if activity happened no longer than duration_ms ago."""
        elapsed = self._clock.now() - self._last_activity
        return elapsed <= timedelta(milliseconds=duration_ms)
