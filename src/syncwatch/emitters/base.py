"""Emitter: the sink contract every backend implements.

Public API (called from the reporter's single thread):
    gauge(metric, value, dims)         overwrite-on-report
    count(metric, delta, dims)         monotonic increment
    distribution(metric, value, dims)  one histogram sample
    flush()                            best effort, never raises
    shutdown()                         flush + release, idempotent
    record_error(indicator)            bump sink_errors{indicator=...}

Backends implement _record() and raise SinkTransient or SinkFatal. This
class absorbs them: transients are counted, fatals mark the emitter
degraded, and a run of max_consecutive_failures fatals disables it.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping

from syncwatch.catalog import SINK_ERRORS, MetricDef, MetricType
from syncwatch.errors import SinkFatal, SinkTransient
from syncwatch.logging import get_logger

APPLICATION_DIMENSION = "application"


class Emitter(ABC):
    """Validates samples against the catalog and tracks backend health."""

    sink_name = "abstract"

    def __init__(
        self,
        application: str | None = None,
        max_consecutive_failures: int = 10,
    ) -> None:
        self._application = application
        self._max_consecutive_failures = max_consecutive_failures
        self._consecutive_failures = 0
        self._degraded = False
        self._disabled = False
        self._closed = False
        self._errors: dict[str, int] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def gauge(self, metric: MetricDef, value: float, dims: Mapping[str, str] | None = None) -> None:
        self._submit(metric, MetricType.GAUGE, value, dims)

    def count(self, metric: MetricDef, delta: float = 1, dims: Mapping[str, str] | None = None) -> None:
        self._submit(metric, MetricType.COUNTER, delta, dims)

    def distribution(
        self, metric: MetricDef, value: float, dims: Mapping[str, str] | None = None
    ) -> None:
        self._submit(metric, MetricType.DISTRIBUTION, value, dims)

    def flush(self) -> None:
        if self._closed or self._disabled:
            return
        try:
            self._flush()
        except Exception:
            get_logger(__name__).warning("sink.flush.failed", sink=self.sink_name, exc_info=True)

    def shutdown(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True
        try:
            self._shutdown()
        except Exception:
            get_logger(__name__).warning("sink.shutdown.failed", sink=self.sink_name, exc_info=True)
        get_logger(__name__).info("sink.shutdown", sink=self.sink_name)

    def record_error(self, indicator: str) -> int:
        """Increment the error tally for ``indicator`` and report it as a gauge."""
        with self._lock:
            total = self._errors.get(indicator, 0) + 1
            self._errors[indicator] = total
        self.gauge(SINK_ERRORS, total, {"indicator": indicator})
        return total

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def disabled(self) -> bool:
        return self._disabled

    @property
    def closed(self) -> bool:
        return self._closed

    def error_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._errors)

    def _record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._degraded = False

    def _record_fatal(self, exc: BaseException) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._degraded = True
            failures = self._consecutive_failures
            newly_disabled = not self._disabled and failures >= self._max_consecutive_failures
            if newly_disabled:
                self._disabled = True
        log = get_logger(__name__)
        if newly_disabled:
            self._on_disabled()
            log.error(
                "sink.disabled",
                sink=self.sink_name,
                consecutive_failures=failures,
                error=repr(exc),
            )
        else:
            log.warning(
                "sink.degraded",
                sink=self.sink_name,
                consecutive_failures=failures,
                error=repr(exc),
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _submit(
        self,
        metric: MetricDef,
        expected: MetricType,
        value: float,
        dims: Mapping[str, str] | None,
    ) -> None:
        if metric.type is not expected:
            raise ValueError(
                f"{metric.name} is a {metric.type.value}, not a {expected.value}"
            )
        tags = metric.validate(dims)
        value = float(value)
        if math.isnan(value) or math.isinf(value) or value < 0:
            raise ValueError(f"{metric.name}: value must be a finite non-negative number, got {value}")
        if self._closed or self._disabled:
            return
        if self._application:
            tags[APPLICATION_DIMENSION] = self._application
        try:
            self._record(metric, value, tags)
        except SinkTransient as exc:
            get_logger(__name__).debug(
                "sink.send.transient", sink=self.sink_name, metric=metric.name, error=repr(exc)
            )
            self._count_delivery_error(metric)
        except SinkFatal as exc:
            self._record_fatal(exc)
            self._count_delivery_error(metric)
        else:
            self._delivered()

    def _on_disabled(self) -> None:
        """Called once when the failure run disables the emitter."""

    def _delivered(self) -> None:
        """A sample left the process. Backends that deliver asynchronously override this."""
        self._record_success()

    def _count_delivery_error(self, metric: MetricDef) -> None:
        # The error gauge itself is not re-counted, or a dead backend recurses.
        if metric is SINK_ERRORS:
            return
        self.record_error(metric.name)

    @abstractmethod
    def _record(self, metric: MetricDef, value: float, tags: dict[str, str]) -> None:
        """Deliver one validated sample. Raise SinkTransient or SinkFatal on failure."""

    def _flush(self) -> None:
        pass

    def _shutdown(self) -> None:
        pass
