"""No-op emitter: default when no sink is configured."""

from __future__ import annotations

from syncwatch.catalog import MetricDef
from syncwatch.emitters.base import Emitter
from syncwatch.logging import get_logger


class NoopEmitter(Emitter):
    """Accepts and discards every sample. Warns once on first use."""

    sink_name = "none"

    def __init__(self, application: str | None = None, max_consecutive_failures: int = 10) -> None:
        super().__init__(application, max_consecutive_failures)
        self._warned = False

    def _record(self, metric: MetricDef, value: float, tags: dict[str, str]) -> None:
        if not self._warned:
            self._warned = True
            get_logger(__name__).warning(
                "sink.none.discarding",
                metric=metric.name,
                hint="Set SYNCWATCH_SINK=statsd or otel to publish metrics",
            )
