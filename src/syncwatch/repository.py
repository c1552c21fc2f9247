"""MetricRepository: the reporter's read-only query layer.

Each operation is one parameterised SQL statement against the operational
database, returning a small plain aggregate. The wall-clock ``now`` comes
from the injected Clock and is passed as ``$1``; the database's own now()
is never used, so results are reproducible under a fixed clock.

No caching, no retries, no partial results: any driver error surfaces as
QueryFailure(kind=<operation>, cause=<exception>).
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import asyncpg

from syncwatch.clock import Clock, SystemClock
from syncwatch.db import QueryExecutor
from syncwatch.errors import QueryFailure
from syncwatch.models import (
    DEFAULT_GEOGRAPHY,
    LONG_RUNNER_LOOKBACK,
    LONG_RUNNER_MIN_RUNS,
    NULL_QUEUE,
    SYNC_CONFIG_TYPE,
    TERMINAL_JOB_STATUSES,
    JobStatus,
    LongRunningJobRecord,
    is_unusually_long,
    missed_schedule,
    schedule_interval,
)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)

# Connections that count as "actively scheduled" for the last-day indicators.
_SCHEDULED_ACTIVE_FILTER = """
    c.status::text = 'active'
    AND NOT c.manual
    AND c.schedule IS NOT NULL
    AND c.schedule::text <> 'null'
    AND c.created_at <= $1::timestamptz - interval '1 day'
"""

RUNNING_JOBS_BY_QUEUE_SQL = """
    SELECT a.processing_task_queue AS queue, count(DISTINCT j.id) AS jobs
    FROM jobs j
    JOIN attempts a ON a.job_id = j.id
    LEFT JOIN connection c ON c.id::text = j.scope
    WHERE j.status::text = 'running'
      AND a.status::text = 'running'
      AND (c.id IS NULL OR c.status::text = 'active')
    GROUP BY a.processing_task_queue
"""

ORPHAN_RUNNING_JOBS_SQL = """
    SELECT count(*)
    FROM jobs j
    JOIN connection c ON c.id::text = j.scope
    WHERE j.status::text = 'running'
      AND c.status::text <> 'active'
"""

PENDING_JOBS_BY_GEOGRAPHY_SQL = """
    SELECT coalesce(c.geography::text, $1::text) AS geography, count(*) AS jobs
    FROM jobs j
    JOIN connection c ON c.id::text = j.scope
    WHERE j.status::text = 'pending'
    GROUP BY 1
"""

OLDEST_PENDING_JOB_AGE_SQL = """
    SELECT coalesce(c.geography::text, $2::text) AS geography,
           extract(epoch FROM ($1::timestamptz - min(j.created_at)))::float8 AS age_seconds
    FROM jobs j
    JOIN connection c ON c.id::text = j.scope
    WHERE j.status::text = 'pending'
    GROUP BY 1
"""

OLDEST_RUNNING_JOB_AGE_SQL = """
    SELECT a.processing_task_queue AS queue,
           extract(epoch FROM ($1::timestamptz - min(j.created_at)))::float8 AS age_seconds
    FROM jobs j
    JOIN attempts a ON a.job_id = j.id
    LEFT JOIN connection c ON c.id::text = j.scope
    WHERE j.status::text = 'running'
      AND a.status::text = 'running'
      AND (c.id IS NULL OR c.status::text = 'active')
    GROUP BY a.processing_task_queue
"""

ACTIVE_CONNECTIONS_PER_WORKSPACE_SQL = """
    SELECT w.id AS workspace_id, count(c.id) AS connections
    FROM workspace w
    JOIN actor a ON a.workspace_id = w.id
    JOIN connection c ON c.source_id = a.id
    WHERE NOT w.tombstone
      AND c.status::text = 'active'
    GROUP BY w.id
    ORDER BY w.id
"""

TERMINAL_JOB_RUNTIME_SQL = """
    SELECT j.status::text AS status,
           avg(extract(epoch FROM (j.updated_at - j.created_at)))::float8 AS runtime_seconds
    FROM jobs j
    WHERE j.status::text = ANY($2::text[])
      AND j.updated_at >= $1::timestamptz - interval '1 hour'
    GROUP BY 1
"""

SCHEDULED_ACTIVE_CONNECTIONS_SQL = f"""
    SELECT count(*)
    FROM connection c
    WHERE {_SCHEDULED_ACTIVE_FILTER}
"""

SCHEDULED_CONNECTIONS_WITH_LAST_SYNC_SQL = f"""
    SELECT c.id::text AS connection_id,
           c.schedule::text AS schedule,
           c.created_at,
           last_sync.status AS last_status,
           last_sync.updated_at AS last_updated_at
    FROM connection c
    LEFT JOIN LATERAL (
        SELECT j.status::text AS status, j.updated_at
        FROM jobs j
        WHERE j.scope = c.id::text
          AND j.config_type::text = $2::text
        ORDER BY j.created_at DESC, j.id DESC
        LIMIT 1
    ) last_sync ON true
    WHERE {_SCHEDULED_ACTIVE_FILTER}
"""

RUNNING_SYNCS_WITH_RECENT_RUNTIMES_SQL = """
    SELECT r.scope AS connection_id,
           extract(epoch FROM ($1::timestamptz - r.created_at))::float8 AS elapsed_seconds,
           r.config::jsonb -> 'sync' ->> 'sourceDockerImage' AS source_image,
           r.config::jsonb -> 'sync' ->> 'destinationDockerImage' AS destination_image,
           recent.runtimes
    FROM (
        SELECT DISTINCT ON (j.scope) j.scope, j.created_at, j.config
        FROM jobs j
        WHERE j.status::text = 'running'
          AND j.config_type::text = $2::text
          AND j.scope <> ''
        ORDER BY j.scope, j.created_at DESC
    ) r
    CROSS JOIN LATERAL (
        SELECT array_agg(d.runtime ORDER BY d.updated_at DESC) AS runtimes
        FROM (
            SELECT extract(epoch FROM (j.updated_at - j.created_at))::float8 AS runtime,
                   j.updated_at
            FROM jobs j
            WHERE j.scope = r.scope
              AND j.config_type::text = $2::text
              AND j.status::text = 'succeeded'
              AND j.updated_at >= $1::timestamptz - $3::interval
            ORDER BY j.updated_at DESC
            LIMIT $4
        ) d
    ) recent
"""


def _zero_filled(known: Iterable[str], observed: dict[str, Any], zero: Any) -> dict[str, Any]:
    """Every known key first (zero baseline), then any extra observed keys."""
    result = {key: zero for key in known}
    result.update(observed)
    return result


class MetricRepository:
    """Fleet-health queries over a read-only executor (asyncpg pool or connection)."""

    def __init__(
        self,
        executor: QueryExecutor,
        clock: Clock | None = None,
        known_queues: Iterable[str] = ("SYNC", "AWS_PARIS_SYNC"),
        known_geographies: Iterable[str] = ("AUTO", "US", "EU"),
    ) -> None:
        self._executor = executor
        self._clock = clock or SystemClock()
        self._known_queues = tuple(known_queues)
        self._known_geographies = tuple(known_geographies)

    async def _fetch(self, kind: str, query: str, *args: Any) -> list[Any]:
        try:
            return list(await self._executor.fetch(query, *args))
        except _DB_ERRORS as exc:
            raise QueryFailure(kind, exc) from exc

    async def _fetchval(self, kind: str, query: str, *args: Any) -> Any:
        try:
            return await self._executor.fetchval(query, *args)
        except _DB_ERRORS as exc:
            raise QueryFailure(kind, exc) from exc

    # ── Jobs by queue ────────────────────────────────────────────────

    async def running_jobs_by_queue(self) -> dict[str, int]:
        """Running jobs with a running attempt, keyed by attempt queue.

        Known queues and the literal "null" key always appear, so a queue
        that drained since the last tick is reported as 0.
        """
        rows = await self._fetch("running_jobs_by_queue", RUNNING_JOBS_BY_QUEUE_SQL)
        observed = {
            (row["queue"] if row["queue"] is not None else NULL_QUEUE): int(row["jobs"])
            for row in rows
        }
        return _zero_filled((*self._known_queues, NULL_QUEUE), observed, 0)

    async def orphan_running_jobs(self) -> int:
        """Running jobs whose connection exists but is not active."""
        count = await self._fetchval("orphan_running_jobs", ORPHAN_RUNNING_JOBS_SQL)
        return int(count or 0)

    async def oldest_running_job_age_seconds_by_queue(self) -> dict[str, float]:
        """Oldest running job per queue, counting the same jobs as running_jobs_by_queue."""
        rows = await self._fetch(
            "oldest_running_job_age_seconds_by_queue",
            OLDEST_RUNNING_JOB_AGE_SQL,
            self._clock.now(),
        )
        observed = {
            (row["queue"] if row["queue"] is not None else NULL_QUEUE): max(
                float(row["age_seconds"]), 0.0
            )
            for row in rows
        }
        return _zero_filled(self._known_queues, observed, 0.0)

    # ── Jobs by geography ────────────────────────────────────────────

    async def pending_jobs_by_geography(self) -> dict[str, int]:
        rows = await self._fetch(
            "pending_jobs_by_geography", PENDING_JOBS_BY_GEOGRAPHY_SQL, DEFAULT_GEOGRAPHY
        )
        observed = {row["geography"]: int(row["jobs"]) for row in rows}
        return _zero_filled(self._known_geographies, observed, 0)

    async def oldest_pending_job_age_seconds_by_geography(self) -> dict[str, float]:
        rows = await self._fetch(
            "oldest_pending_job_age_seconds_by_geography",
            OLDEST_PENDING_JOB_AGE_SQL,
            self._clock.now(),
            DEFAULT_GEOGRAPHY,
        )
        observed = {row["geography"]: max(float(row["age_seconds"]), 0.0) for row in rows}
        return _zero_filled(self._known_geographies, observed, 0.0)

    # ── Connections ──────────────────────────────────────────────────

    async def active_connections_per_workspace(self) -> list[int]:
        """Active connection count per live workspace, ordered by workspace id."""
        rows = await self._fetch(
            "active_connections_per_workspace", ACTIVE_CONNECTIONS_PER_WORKSPACE_SQL
        )
        return [int(row["connections"]) for row in rows if row["connections"]]

    async def terminal_job_runtime_last_hour(self) -> dict[JobStatus, float]:
        """Mean runtime per terminal status over jobs updated in the last hour."""
        terminal = sorted(s.value for s in TERMINAL_JOB_STATUSES)
        rows = await self._fetch(
            "terminal_job_runtime_last_hour",
            TERMINAL_JOB_RUNTIME_SQL,
            self._clock.now(),
            terminal,
        )
        return {
            JobStatus(row["status"]): max(float(row["runtime_seconds"]), 0.0)
            for row in rows
            if row["runtime_seconds"] is not None
        }

    # ── Schedule health ──────────────────────────────────────────────

    async def scheduled_active_connections_last_day(self) -> int:
        count = await self._fetchval(
            "scheduled_active_connections_last_day",
            SCHEDULED_ACTIVE_CONNECTIONS_SQL,
            self._clock.now(),
        )
        return int(count or 0)

    async def jobs_not_running_on_schedule_last_day(self) -> int:
        """Scheduled connections whose most recent sync completed over one interval ago."""
        now = self._clock.now()
        rows = await self._fetch(
            "jobs_not_running_on_schedule_last_day",
            SCHEDULED_CONNECTIONS_WITH_LAST_SYNC_SQL,
            now,
            SYNC_CONFIG_TYPE,
        )
        return sum(
            1
            for row in rows
            if missed_schedule(
                schedule_interval(row["schedule"]),
                row["last_status"],
                row["last_updated_at"],
                row["created_at"],
                now,
            )
        )

    async def unusually_long_running_jobs(self) -> list[LongRunningJobRecord]:
        """Running syncs taking longer than max(2x their recent average, 15 min).

        A connection qualifies only with at least five succeeded syncs in the
        last week. Image names come from the running job's config and are
        empty when the config is null.
        """
        rows = await self._fetch(
            "unusually_long_running_jobs",
            RUNNING_SYNCS_WITH_RECENT_RUNTIMES_SQL,
            self._clock.now(),
            SYNC_CONFIG_TYPE,
            LONG_RUNNER_LOOKBACK,
            LONG_RUNNER_MIN_RUNS,
        )
        records = []
        for row in rows:
            runtimes = [float(r) for r in (row["runtimes"] or []) if r is not None]
            if not is_unusually_long(float(row["elapsed_seconds"]), runtimes):
                continue
            records.append(
                LongRunningJobRecord(
                    connection_id=row["connection_id"],
                    source_image=row["source_image"] or "",
                    destination_image=row["destination_image"] or "",
                )
            )
        return records
