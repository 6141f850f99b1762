"""Tests for the Schedule data model and its on-disk shape."""

from datetime import datetime, timezone

import pytest

from cadence.core.errors import ScheduleError
from cadence.scheduler.schedule import (
    Schedule,
    ScheduleType,
    TaskInteraction,
    TimeUnit,
    format_instant,
    parse_instant,
)

UTC = timezone.utc

EDITOR_ENTRY = {
    "id": "1a2b3c4d",
    "name": "Nightly review",
    "mode": "code",
    "modeDisplayName": "Code",
    "taskInstructions": "Review open PRs",
    "scheduleType": "time",
    "timeInterval": "2",
    "timeUnit": "hour",
    "selectedDays": {"mon": True, "tue": False},
    "startDate": "2025-04-10",
    "startHour": "09",
    "startMinute": "30",
    "expirationDate": "2025-05-01",
    "requireActivity": True,
    "taskInteraction": "skip",
    "inactivityDelay": "15",
    "lastExecutionTime": "2025-04-11T08:00:00.000Z",
    "createdAt": "2025-04-01T00:00:00Z",
    "updatedAt": "2025-04-02T00:00:00Z",
}


class TestFromDict:
    def test_reads_editor_entry(self):
        s = Schedule.from_dict(EDITOR_ENTRY)

        assert s.id == "1a2b3c4d"
        assert s.mode_display_name == "Code"
        assert s.time_interval == 2
        assert s.time_unit == TimeUnit.HOUR
        assert s.selected_days == {"mon": True, "tue": False}
        assert (s.start_hour, s.start_minute) == (9, 30)
        assert (s.expiration_hour, s.expiration_minute) == (23, 59)
        assert s.require_activity is True
        assert s.task_interaction == TaskInteraction.SKIP
        assert s.inactivity_delay == 15
        assert s.last_execution_time == datetime(2025, 4, 11, 8, tzinfo=UTC)

    def test_missing_active_means_active(self):
        assert Schedule.from_dict(EDITOR_ENTRY).active is True
        assert Schedule.from_dict({**EDITOR_ENTRY, "active": False}).active is False

    def test_minimal_entry_gets_defaults(self):
        s = Schedule.from_dict({"id": "x"})

        assert s.schedule_type == ScheduleType.TIME
        assert s.task_interaction == TaskInteraction.WAIT
        assert s.inactivity_delay == 10
        assert s.time_interval is None
        assert s.selected_days is None
        assert s.created_at

    def test_unknown_enum_values_fall_back(self):
        s = Schedule.from_dict({"id": "x", "timeUnit": "fortnight", "taskInteraction": "panic"})
        assert s.time_unit is None
        assert s.task_interaction == TaskInteraction.WAIT

    def test_numeric_fields_accept_numbers(self):
        s = Schedule.from_dict({"id": "x", "timeInterval": 3, "startHour": 7})
        assert s.time_interval == 3
        assert s.start_hour == 7


class TestToDict:
    def test_writes_editor_shape(self):
        d = Schedule.from_dict(EDITOR_ENTRY).to_dict()

        assert d["taskInstructions"] == "Review open PRs"
        assert d["timeInterval"] == "2"
        assert d["startHour"] == "09"
        assert d["inactivityDelay"] == "15"
        assert d["lastExecutionTime"] == "2025-04-11T08:00:00Z"
        assert d["active"] is True

    def test_omits_unset_optional_keys(self):
        d = Schedule(name="n", mode="code", task_instructions="t").to_dict()
        for key in ("timeInterval", "timeUnit", "lastExecutionTime", "lastTaskId", "modeDisplayName"):
            assert key not in d

    def test_survives_a_reload(self):
        first = Schedule.from_dict(EDITOR_ENTRY)
        assert Schedule.from_dict(first.to_dict()) == first


class TestDerivedViews:
    def test_only_active_time_schedules_are_timer_driven(self):
        s = Schedule(name="n", mode="code", task_instructions="t")
        assert s.is_timer_driven
        assert not s.copy(active=False).is_timer_driven
        assert not s.copy(schedule_type=ScheduleType.COMPLETION).is_timer_driven

    def test_day_restriction_needs_a_true_day(self):
        s = Schedule(name="n", mode="code", task_instructions="t")
        assert not s.has_day_restriction
        assert not s.copy(selected_days={"mon": False}).has_day_restriction
        assert s.copy(selected_days={"mon": True}).has_day_restriction

    def test_last_reference_time(self):
        s = Schedule(name="n", mode="code", task_instructions="t")
        assert s.last_reference_time() is None
        early = datetime(2025, 4, 11, 8, tzinfo=UTC)
        late = datetime(2025, 4, 11, 9, tzinfo=UTC)
        assert s.copy(last_execution_time=early, last_skipped_time=late).last_reference_time() == late

    def test_new_assigns_short_unique_ids(self):
        a = Schedule.new("a", "code", "t")
        b = Schedule.new("b", "code", "t")
        assert len(a.id) == 8
        assert a.id != b.id

    def test_new_rejects_engine_owned_fields(self):
        with pytest.raises(ScheduleError):
            Schedule.new("a", "code", "t", id="fixed")
        with pytest.raises(ScheduleError):
            Schedule.new("a", "code", "t", last_execution_time=datetime(2025, 4, 11, tzinfo=UTC))

        schedule = Schedule.new("a", "code", "t", time_interval=2)
        assert schedule.time_interval == 2
        assert schedule.last_execution_time is None


def test_parse_instant():
    assert parse_instant(None) is None
    assert parse_instant("") is None
    assert parse_instant("not a date") is None
    assert parse_instant("2025-04-11T10:00:00") == datetime(2025, 4, 11, 10, tzinfo=UTC)
    assert parse_instant("2025-04-11T12:00:00+02:00") == datetime(2025, 4, 11, 10, tzinfo=UTC)


def test_format_instant_uses_utc_z_suffix():
    assert format_instant(None) is None
    assert format_instant(datetime(2025, 4, 11, 10, tzinfo=UTC)) == "2025-04-11T10:00:00Z"
