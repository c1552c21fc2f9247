"""Declarative indicator catalog: single source of truth for every metric.

Every metric the reporter can emit is defined once here. Emitters create
backend instruments from these definitions; the reporter binds a repository
query to each entry. No metric is defined anywhere else.

Adding a metric:
    1. Add a MetricDef below and append it to CATALOG
    2. Add an IndicatorBinding in reporter.default_bindings()
    3. Done. statsd and OTel sinks both pick it up.

Names are the stable contract with dashboards. Counters never end in
"_total" (the OTel Prometheus exporter appends it).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from syncwatch.errors import InvalidDimensions


class MetricType(Enum):
    GAUGE = "gauge"
    COUNTER = "counter"
    DISTRIBUTION = "distribution"


@dataclass(frozen=True)
class MetricDef:
    """A single indicator definition."""

    name: str
    type: MetricType
    description: str
    unit: str = "1"
    dimensions: tuple[str, ...] = ()
    buckets: tuple[float, ...] | None = None  # distributions only

    def validate(self, dims: Mapping[str, str] | None) -> dict[str, str]:
        """Return ``dims`` in schema order, rejecting extra or missing keys."""
        dims = dims or {}
        missing = [k for k in self.dimensions if k not in dims]
        extra = sorted(k for k in dims if k not in self.dimensions)
        if missing or extra:
            raise InvalidDimensions(self.name, missing=missing, extra=extra)
        ordered: dict[str, str] = {}
        for key in self.dimensions:
            value = dims[key]
            if not isinstance(value, str):
                raise InvalidDimensions(
                    self.name, detail=f"dimension {key!r} must be a string, got {type(value).__name__}"
                )
            ordered[key] = value
        return ordered


# ── Jobs by queue ────────────────────────────────────────────────────
JOB_RUNNING_BY_QUEUE = MetricDef(
    "job_running_by_queue", MetricType.GAUGE,
    "Running jobs with a running attempt, by processing queue",
    "jobs", ("queue",),
)
JOB_RUNNING_OLDEST_AGE_SECONDS = MetricDef(
    "job_running_oldest_age_seconds", MetricType.GAUGE,
    "Age of the oldest running job, by processing queue",
    "s", ("queue",),
)
JOB_ORPHAN_RUNNING = MetricDef(
    "job_orphan_running", MetricType.GAUGE,
    "Running jobs whose connection is no longer active",
    "jobs",
)
# ── Jobs by geography ────────────────────────────────────────────────
JOB_PENDING_BY_GEOGRAPHY = MetricDef(
    "job_pending_by_geography", MetricType.GAUGE,
    "Pending jobs, by connection geography",
    "jobs", ("geography",),
)
JOB_PENDING_OLDEST_AGE_SECONDS = MetricDef(
    "job_pending_oldest_age_seconds", MetricType.GAUGE,
    "Age of the oldest pending job, by connection geography",
    "s", ("geography",),
)
# ── Connections ──────────────────────────────────────────────────────
CONNECTION_ACTIVE_PER_WORKSPACE = MetricDef(
    "connection_active_per_workspace", MetricType.DISTRIBUTION,
    "Active connections per non-tombstoned workspace",
    "connections",
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
)
JOB_TERMINAL_RUNTIME_SECONDS = MetricDef(
    "job_terminal_runtime_seconds", MetricType.DISTRIBUTION,
    "Mean runtime of jobs that reached a terminal status in the last hour",
    "s", ("status",),
    buckets=(60, 300, 900, 1800, 3600, 7200, 14400, 43200, 86400),
)
# ── Schedule health ──────────────────────────────────────────────────
CONNECTION_SCHEDULED_LAST_DAY = MetricDef(
    "connection_scheduled_last_day", MetricType.GAUGE,
    "Active scheduled connections that existed a full day ago",
    "connections",
)
JOB_MISSED_SCHEDULE_LAST_DAY = MetricDef(
    "job_missed_schedule_last_day", MetricType.GAUGE,
    "Scheduled connections whose last sync completed more than one interval ago",
    "connections",
)
JOB_UNUSUALLY_LONG_RUNNING = MetricDef(
    "job_unusually_long_running", MetricType.COUNTER,
    "Running syncs exceeding twice their recent average runtime",
    "jobs", ("connection_id", "source_image", "destination_image"),
)
# ── Reporter self-health ─────────────────────────────────────────────
SINK_ERRORS = MetricDef(
    "sink_errors", MetricType.GAUGE,
    "Indicator query or delivery failures since start, by indicator",
    "errors", ("indicator",),
)

CATALOG: tuple[MetricDef, ...] = (
    JOB_RUNNING_BY_QUEUE,
    JOB_RUNNING_OLDEST_AGE_SECONDS,
    JOB_ORPHAN_RUNNING,
    JOB_PENDING_BY_GEOGRAPHY,
    JOB_PENDING_OLDEST_AGE_SECONDS,
    CONNECTION_ACTIVE_PER_WORKSPACE,
    JOB_TERMINAL_RUNTIME_SECONDS,
    CONNECTION_SCHEDULED_LAST_DAY,
    JOB_MISSED_SCHEDULE_LAST_DAY,
    JOB_UNUSUALLY_LONG_RUNNING,
    SINK_ERRORS,
)

_BY_NAME: dict[str, MetricDef] = {m.name: m for m in CATALOG}


def get_metric(name: str) -> MetricDef:
    """Look up a catalog entry by its stable name."""
    try:
        return _BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown metric: {name!r}. Available: {list(_BY_NAME)}") from None
