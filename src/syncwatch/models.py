"""Domain vocabulary for the operational database and the reporter's outputs.

All types here are pure: no database driver, no emitter. The anomaly
predicates live here so the repository can stay a thin query layer and the
definitions can be tested without a database.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from syncwatch.catalog import MetricDef


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED})


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DEPRECATED = "deprecated"


class ScheduleTimeUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"

    @property
    def seconds(self) -> int:
        return _UNIT_SECONDS[self]


_UNIT_SECONDS = {
    ScheduleTimeUnit.MINUTES: 60,
    ScheduleTimeUnit.HOURS: 3600,
    ScheduleTimeUnit.DAYS: 86400,
    ScheduleTimeUnit.WEEKS: 604800,
}

DEFAULT_GEOGRAPHY = "AUTO"
NULL_QUEUE = "null"
SYNC_CONFIG_TYPE = "sync"

LONG_RUNNER_MIN_RUNS = 5
LONG_RUNNER_FLOOR = timedelta(minutes=15)
LONG_RUNNER_LOOKBACK = timedelta(days=7)
SCHEDULE_MISS_HORIZON = timedelta(days=1)


@dataclass(frozen=True)
class IndicatorSample:
    """One emitted value of a catalog metric."""

    metric: MetricDef
    value: float
    dimensions: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LongRunningJobRecord:
    connection_id: str
    source_image: str = ""
    destination_image: str = ""


def schedule_interval(schedule: Mapping[str, Any] | str | None) -> timedelta | None:
    """Normalise a ``{"units": n, "timeUnit": "hours"}`` payload to a duration.

    Accepts the decoded mapping or the raw JSON text asyncpg returns for
    jsonb columns. Returns None for missing, malformed or non-positive
    schedules and for time units outside minutes/hours/days/weeks.
    """
    if schedule is None:
        return None
    if isinstance(schedule, str):
        try:
            schedule = json.loads(schedule)
        except json.JSONDecodeError:
            return None
    if not isinstance(schedule, Mapping):
        return None
    units = schedule.get("units")
    raw_unit = schedule.get("timeUnit", schedule.get("time_unit"))
    if isinstance(units, bool) or not isinstance(units, (int, float)) or units <= 0:
        return None
    try:
        unit = ScheduleTimeUnit(str(raw_unit).lower())
    except ValueError:
        return None
    return timedelta(seconds=units * unit.seconds)


def missed_schedule(
    interval: timedelta | None,
    last_status: str | None,
    last_completed_at: datetime | None,
    connection_created_at: datetime,
    now: datetime,
) -> bool:
    """Whether a scheduled connection fell behind its own cadence.

    The most recent sync job counts as completed when its status is terminal;
    its ``updated_at`` is the completion time. A sync still in flight is not a
    miss. A connection that never ran is measured from its creation. Schedules
    longer than a day are not expected to run within the last day and never
    count.
    """
    if interval is None or interval > SCHEDULE_MISS_HORIZON:
        return False
    if last_status is None:
        return now - connection_created_at > interval
    if last_status not in {s.value for s in TERMINAL_JOB_STATUSES}:
        return False
    if last_completed_at is None:
        return False
    return now - last_completed_at > interval


def is_unusually_long(elapsed_seconds: float, recent_runtimes: Sequence[float]) -> bool:
    """Whether a running sync exceeds ``max(2 * avg, 15 min)`` of its recent runs.

    ``recent_runtimes`` is ordered most recent first; only the first
    LONG_RUNNER_MIN_RUNS are averaged and fewer than that never qualify.
    """
    if len(recent_runtimes) < LONG_RUNNER_MIN_RUNS:
        return False
    window = recent_runtimes[:LONG_RUNNER_MIN_RUNS]
    avg = math.fsum(window) / LONG_RUNNER_MIN_RUNS
    threshold = max(2 * avg, LONG_RUNNER_FLOOR.total_seconds())
    return elapsed_seconds > threshold
