"""Reporter: the periodic query-and-emit loop.

One cooperative task drives everything:

    IDLE -> TICK -> EMIT -> ... -> SLEEP -> TICK ... -> STOPPED

Each tick walks the indicator bindings in catalog order. A binding's query
runs under the per-query deadline; a failure or timeout is counted into
sink_errors and the tick moves on to the next indicator. The next tick is
scheduled from the monotonic start of the previous one, so a slow tick
shortens the following sleep instead of drifting the cadence.

The shutdown token is an asyncio.Event checked between indicators and
awaited while sleeping.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from syncwatch import catalog
from syncwatch.catalog import MetricDef, MetricType
from syncwatch.clock import Clock, SystemClock
from syncwatch.config import ReporterConfig
from syncwatch.emitters.base import Emitter
from syncwatch.errors import QueryFailure
from syncwatch.logging import get_logger
from syncwatch.models import IndicatorSample, JobStatus, LongRunningJobRecord
from syncwatch.repository import MetricRepository

Point = tuple[float, dict[str, str]]


class ReporterState(Enum):
    IDLE = "idle"
    TICK = "tick"
    EMIT = "emit"
    SLEEP = "sleep"
    STOPPED = "stopped"


@dataclass(frozen=True)
class IndicatorBinding:
    """A catalog metric, the repository call that feeds it, and how to fan it out."""

    metric: MetricDef
    query: Callable[[MetricRepository], Awaitable[Any]]
    shape: Callable[[Any], Iterable[Point]]


@dataclass
class TickReport:
    samples: list[IndicatorSample] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    interrupted: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "samples": [
                {"metric": s.metric.name, "value": s.value, "dimensions": s.dimensions}
                for s in self.samples
            ],
            "failed": list(self.failed),
            "duration_seconds": round(self.duration_seconds, 6),
            "interrupted": self.interrupted,
        }


# ── Shapes: repository aggregate -> (value, dimensions) points ──────


def _scalar(value: int | float) -> list[Point]:
    return [(float(value), {})]


def _keyed(dimension: str) -> Callable[[dict[str, Any]], list[Point]]:
    def shape(values: dict[str, Any]) -> list[Point]:
        return [(float(v), {dimension: str(k)}) for k, v in values.items()]

    return shape


def _each(values: Iterable[int | float]) -> list[Point]:
    return [(float(v), {}) for v in values]


def _by_status(values: dict[JobStatus, float]) -> list[Point]:
    return [(float(v), {"status": JobStatus(s).value}) for s, v in values.items()]


def _long_runners(records: Iterable[LongRunningJobRecord]) -> list[Point]:
    return [
        (
            1.0,
            {
                "connection_id": r.connection_id,
                "source_image": r.source_image,
                "destination_image": r.destination_image,
            },
        )
        for r in records
    ]


def default_bindings() -> list[IndicatorBinding]:
    """One binding per reported catalog entry, in catalog order."""
    return [
        IndicatorBinding(
            catalog.JOB_RUNNING_BY_QUEUE,
            lambda repo: repo.running_jobs_by_queue(),
            _keyed("queue"),
        ),
        IndicatorBinding(
            catalog.JOB_RUNNING_OLDEST_AGE_SECONDS,
            lambda repo: repo.oldest_running_job_age_seconds_by_queue(),
            _keyed("queue"),
        ),
        IndicatorBinding(
            catalog.JOB_ORPHAN_RUNNING,
            lambda repo: repo.orphan_running_jobs(),
            _scalar,
        ),
        IndicatorBinding(
            catalog.JOB_PENDING_BY_GEOGRAPHY,
            lambda repo: repo.pending_jobs_by_geography(),
            _keyed("geography"),
        ),
        IndicatorBinding(
            catalog.JOB_PENDING_OLDEST_AGE_SECONDS,
            lambda repo: repo.oldest_pending_job_age_seconds_by_geography(),
            _keyed("geography"),
        ),
        IndicatorBinding(
            catalog.CONNECTION_ACTIVE_PER_WORKSPACE,
            lambda repo: repo.active_connections_per_workspace(),
            _each,
        ),
        IndicatorBinding(
            catalog.JOB_TERMINAL_RUNTIME_SECONDS,
            lambda repo: repo.terminal_job_runtime_last_hour(),
            _by_status,
        ),
        IndicatorBinding(
            catalog.CONNECTION_SCHEDULED_LAST_DAY,
            lambda repo: repo.scheduled_active_connections_last_day(),
            _scalar,
        ),
        IndicatorBinding(
            catalog.JOB_MISSED_SCHEDULE_LAST_DAY,
            lambda repo: repo.jobs_not_running_on_schedule_last_day(),
            _scalar,
        ),
        IndicatorBinding(
            catalog.JOB_UNUSUALLY_LONG_RUNNING,
            lambda repo: repo.unusually_long_running_jobs(),
            _long_runners,
        ),
    ]


class Reporter:
    """Drives the bindings against one repository and one emitter."""

    def __init__(
        self,
        config: ReporterConfig,
        repository: MetricRepository,
        emitter: Emitter,
        clock: Clock | None = None,
        bindings: list[IndicatorBinding] | None = None,
    ) -> None:
        self._config = config
        self._repository = repository
        self._emitter = emitter
        self._clock = clock or SystemClock()
        self._bindings = bindings if bindings is not None else default_bindings()
        self._state = ReporterState.IDLE
        self._ticks = 0

    @property
    def state(self) -> ReporterState:
        return self._state

    @property
    def ticks(self) -> int:
        return self._ticks

    async def tick(self, stop: asyncio.Event | None = None) -> TickReport:
        """Query and emit every indicator once.

        A failing indicator is counted into sink_errors and skipped; the
        rest still run, and the emitter is flushed however the tick ends.
        """
        t0 = self._clock.monotonic()
        report = TickReport()
        deadline = self._config.effective_tick_deadline

        try:
            for binding in self._bindings:
                if stop is not None and stop.is_set():
                    report.interrupted = True
                    break
                await self._run_binding(binding, report, deadline)
        finally:
            # force_flush blocks on the exporter; keep it off the event loop.
            await asyncio.to_thread(self._emitter.flush)
            self._ticks += 1
            report.duration_seconds = self._clock.monotonic() - t0
            self._state = ReporterState.IDLE

        get_logger(__name__).info(
            "reporter.tick.completed",
            tick=self._ticks,
            samples=len(report.samples),
            failed=report.failed,
            duration_seconds=round(report.duration_seconds, 3),
            interrupted=report.interrupted,
        )
        if report.duration_seconds > self._config.cadence_seconds:
            get_logger(__name__).warning(
                "reporter.tick.overrun",
                duration_seconds=round(report.duration_seconds, 3),
                cadence_seconds=self._config.cadence_seconds,
            )
        return report

    async def _run_binding(
        self, binding: IndicatorBinding, report: TickReport, deadline: float
    ) -> None:
        name = binding.metric.name

        self._state = ReporterState.TICK
        try:
            aggregate = await asyncio.wait_for(binding.query(self._repository), deadline)
        except QueryFailure as exc:
            self._indicator_failed(report, name, repr(exc.cause))
            return
        except TimeoutError:
            self._indicator_failed(report, name, f"timed out after {deadline}s")
            return
        except Exception as exc:
            get_logger(__name__).exception("indicator.crashed", indicator=name, stage="query")
            self._indicator_failed(report, name, repr(exc))
            return

        self._state = ReporterState.EMIT
        try:
            points = list(binding.shape(aggregate))
            for value, dims in points:
                self._emit(binding.metric, value, dims)
                report.samples.append(IndicatorSample(binding.metric, value, dims))
        except ValueError as exc:
            # Includes InvalidDimensions: a query returned a value the schema rejects.
            self._indicator_failed(report, name, str(exc))
        except Exception as exc:
            get_logger(__name__).exception("indicator.crashed", indicator=name, stage="emit")
            self._indicator_failed(report, name, repr(exc))

    async def run(self, stop: asyncio.Event) -> None:
        """Tick every cadence until ``stop`` is set, then shut the emitter down."""
        cadence = self._config.cadence_seconds
        get_logger(__name__).info(
            "reporter.started",
            cadence_seconds=cadence,
            tick_deadline_seconds=self._config.effective_tick_deadline,
            sink=self._emitter.sink_name,
            indicators=len(self._bindings),
        )
        try:
            while not stop.is_set():
                t0 = self._clock.monotonic()
                try:
                    await self.tick(stop)
                except Exception:
                    get_logger(__name__).exception("reporter.tick.crashed", tick=self._ticks + 1)
                if stop.is_set():
                    break

                self._state = ReporterState.SLEEP
                delay = max(0.0, t0 + cadence - self._clock.monotonic())
                try:
                    await asyncio.wait_for(stop.wait(), timeout=delay)
                except TimeoutError:
                    pass
        finally:
            self._state = ReporterState.STOPPED
            self._emitter.shutdown()
            get_logger(__name__).info("reporter.stopped", ticks=self._ticks)

    def _emit(self, metric: MetricDef, value: float, dims: dict[str, str]) -> None:
        if metric.type is MetricType.GAUGE:
            self._emitter.gauge(metric, value, dims)
        elif metric.type is MetricType.COUNTER:
            self._emitter.count(metric, value, dims)
        else:
            self._emitter.distribution(metric, value, dims)

    def _indicator_failed(self, report: TickReport, name: str, error: str) -> None:
        report.failed.append(name)
        total = self._emitter.record_error(name)
        get_logger(__name__).warning("indicator.failed", indicator=name, error=error, errors_total=total)
