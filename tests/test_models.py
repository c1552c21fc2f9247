"""Tests for the domain vocabulary: statuses, schedule parsing, anomaly predicates."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from syncwatch.models import (
    LONG_RUNNER_FLOOR,
    TERMINAL_JOB_STATUSES,
    JobStatus,
    ScheduleTimeUnit,
    is_unusually_long,
    missed_schedule,
    schedule_interval,
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)
HOUR = timedelta(hours=1)
FLOOR = LONG_RUNNER_FLOOR.total_seconds()


class TestJobStatus:
    def test_terminal_set(self):
        assert TERMINAL_JOB_STATUSES == {
            JobStatus.SUCCEEDED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        }

    def test_is_terminal(self):
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.RUNNING.is_terminal
        assert not JobStatus.INCOMPLETE.is_terminal

    def test_string_comparison(self):
        assert JobStatus("succeeded") is JobStatus.SUCCEEDED
        assert JobStatus.PENDING == "pending"


class TestScheduleInterval:
    def test_hours(self):
        assert schedule_interval({"units": 1, "timeUnit": "hours"}) == HOUR

    def test_json_text(self):
        assert schedule_interval('{"units": 30, "timeUnit": "minutes"}') == timedelta(minutes=30)

    def test_snake_case_key_and_upper_unit(self):
        assert schedule_interval({"units": 2, "time_unit": "DAYS"}) == timedelta(days=2)

    def test_weeks(self):
        assert schedule_interval({"units": 1, "timeUnit": "weeks"}) == timedelta(weeks=1)

    @pytest.mark.parametrize(
        "schedule",
        [
            None,
            "not json",
            "[1, 2]",
            {},
            {"units": 0, "timeUnit": "hours"},
            {"units": -3, "timeUnit": "hours"},
            {"units": True, "timeUnit": "hours"},
            {"units": "5", "timeUnit": "hours"},
            {"units": 5, "timeUnit": "months"},
            {"units": 5},
        ],
    )
    def test_rejects_malformed(self, schedule):
        assert schedule_interval(schedule) is None

    @given(
        st.integers(min_value=1, max_value=10_000),
        st.sampled_from(list(ScheduleTimeUnit)),
    )
    @settings(max_examples=50)
    def test_interval_is_units_times_unit(self, units, unit):
        interval = schedule_interval({"units": units, "timeUnit": unit.value})
        assert interval == timedelta(seconds=units * unit.seconds)


class TestMissedSchedule:
    def test_no_interval_never_misses(self):
        assert not missed_schedule(None, None, None, NOW - timedelta(days=3), NOW)

    def test_never_ran_measured_from_creation(self):
        assert missed_schedule(HOUR, None, None, NOW - timedelta(days=2), NOW)
        assert not missed_schedule(HOUR, None, None, NOW - timedelta(minutes=30), NOW)

    def test_in_flight_is_not_a_miss(self):
        created = NOW - timedelta(days=2)
        assert not missed_schedule(HOUR, "running", NOW - timedelta(hours=5), created, NOW)
        assert not missed_schedule(HOUR, "pending", NOW - timedelta(hours=5), created, NOW)

    def test_terminal_older_than_interval(self):
        created = NOW - timedelta(days=2)
        assert missed_schedule(HOUR, "succeeded", NOW - timedelta(hours=2), created, NOW)
        assert missed_schedule(HOUR, "failed", NOW - timedelta(hours=2), created, NOW)

    def test_terminal_within_interval(self):
        created = NOW - timedelta(days=2)
        assert not missed_schedule(HOUR, "succeeded", NOW - timedelta(minutes=20), created, NOW)

    def test_exactly_one_interval_is_not_a_miss(self):
        created = NOW - timedelta(days=2)
        assert not missed_schedule(HOUR, "cancelled", NOW - HOUR, created, NOW)

    def test_schedules_longer_than_a_day_never_count(self):
        created = NOW - timedelta(days=30)
        weekly = timedelta(weeks=1)
        assert not missed_schedule(weekly, "succeeded", NOW - timedelta(days=20), created, NOW)
        assert not missed_schedule(weekly, None, None, created, NOW)
        assert missed_schedule(timedelta(days=1), None, None, created, NOW)

    def test_unknown_status_is_not_terminal(self):
        created = NOW - timedelta(days=2)
        assert not missed_schedule(HOUR, "mystery", NOW - timedelta(days=1), created, NOW)


class TestIsUnusuallyLong:
    def test_needs_five_runs(self):
        assert not is_unusually_long(10 * FLOOR, [60.0] * 4)

    def test_floor_applies_to_short_averages(self):
        runs = [60.0] * 5
        assert not is_unusually_long(FLOOR, runs)
        assert is_unusually_long(FLOOR + 1, runs)

    def test_twice_average(self):
        runs = [3600.0] * 5
        assert not is_unusually_long(7200.0, runs)
        assert is_unusually_long(7201.0, runs)

    def test_only_five_most_recent_are_averaged(self):
        runs = [1000.0] * 5 + [100_000.0] * 3
        assert is_unusually_long(2001.0, runs)

    @given(
        st.lists(
            st.floats(min_value=0.0, max_value=86_400.0, allow_nan=False, allow_infinity=False),
            min_size=5,
            max_size=12,
        ),
        st.floats(min_value=0.0, max_value=10 * 86_400.0, allow_nan=False, allow_infinity=False),
    )
    @settings(max_examples=100)
    def test_matches_threshold_definition(self, runs, elapsed):
        avg = sum(runs[:5]) / 5
        threshold = max(2 * avg, FLOOR)
        # Stay clear of float rounding at the boundary.
        if abs(elapsed - threshold) < 1e-6:
            return
        assert is_unusually_long(elapsed, runs) == (elapsed > threshold)

    @given(st.floats(min_value=0.0, max_value=FLOOR, allow_nan=False))
    @settings(max_examples=30)
    def test_never_below_floor(self, elapsed):
        assert not is_unusually_long(elapsed, [0.0] * 5)
