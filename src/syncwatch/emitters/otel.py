"""OpenTelemetry emitter: catalog-driven instruments pushed over OTLP.

Push-based: samples accumulate in an SDK MeterProvider and a
PeriodicExportingMetricReader ships them to the collector every
export interval (default 10 s). The SDK drops a batch whose export fails;
the next batch is unaffected. Each failed export counts as a fatal sink
error, each successful one clears the failure run. Once the failure run
disables the sink, no further batch leaves the process.

Instrument mapping:
    gauge        -> meter.create_gauge      (.set)
    counter      -> meter.create_counter    (.add)
    distribution -> meter.create_histogram  (.record), buckets via Views
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from syncwatch.catalog import CATALOG, MetricDef, MetricType
from syncwatch.emitters.base import Emitter
from syncwatch.errors import EmitterInitError, SinkFatal
from syncwatch.logging import get_logger

# Upper bound on a per-tick flush; the periodic reader retries on its own schedule.
FLUSH_TIMEOUT_MILLIS = 2_000


def create_instruments(meter: Any) -> dict[str, Any]:
    """Create one OTel instrument per catalog entry, keyed by metric name."""
    instruments: dict[str, Any] = {}

    for m in CATALOG:
        if m.type == MetricType.COUNTER:
            instruments[m.name] = meter.create_counter(
                m.name, unit=m.unit, description=m.description,
            )
        elif m.type == MetricType.DISTRIBUTION:
            instruments[m.name] = meter.create_histogram(
                m.name, unit=m.unit, description=m.description,
            )
        elif m.type == MetricType.GAUGE:
            instruments[m.name] = meter.create_gauge(
                m.name, unit=m.unit, description=m.description,
            )

    return instruments


def create_views() -> list[Any]:
    """One View per distribution with explicit bucket boundaries."""
    from opentelemetry.sdk.metrics.view import (
        ExplicitBucketHistogramAggregation,
        View,
    )

    views = []
    for m in CATALOG:
        if m.type == MetricType.DISTRIBUTION and m.buckets:
            views.append(
                View(
                    instrument_name=m.name,
                    aggregation=ExplicitBucketHistogramAggregation(
                        boundaries=list(m.buckets),
                    ),
                )
            )

    return views


def _metric_exporter(protocol: str, endpoint: str) -> Any:
    """Return an OTLP metric exporter for the selected protocol."""
    if protocol == "http/protobuf":
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
            OTLPMetricExporter,
        )

        return OTLPMetricExporter(endpoint=endpoint.rstrip("/") + "/v1/metrics")

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
        OTLPMetricExporter,
    )

    return OTLPMetricExporter(endpoint=endpoint)


def _accounting_exporter(
    inner: Any,
    on_result: Callable[[BaseException | None], None],
    is_open: Callable[[], bool] = lambda: True,
) -> Any:
    """Wrap an exporter so every export outcome is reported to ``on_result``.

    Once ``is_open()`` turns false, batches are dropped without reaching
    ``inner``, so a disabled sink never ships the last values it recorded.
    """
    from opentelemetry.sdk.metrics.export import MetricExporter, MetricExportResult

    class _AccountingExporter(MetricExporter):
        def __init__(self) -> None:
            super().__init__(
                preferred_temporality=inner._preferred_temporality,
                preferred_aggregation=inner._preferred_aggregation,
            )

        def export(self, metrics_data: Any, timeout_millis: float = 10_000, **kwargs: Any) -> Any:
            if not is_open():
                return MetricExportResult.SUCCESS
            try:
                result = inner.export(metrics_data, timeout_millis=timeout_millis, **kwargs)
            except Exception as exc:
                on_result(exc)
                return MetricExportResult.FAILURE
            if result is MetricExportResult.SUCCESS:
                on_result(None)
            else:
                on_result(SinkFatal("OTLP export failed; batch dropped"))
            return result

        def force_flush(self, timeout_millis: float = 10_000) -> bool:
            return inner.force_flush(timeout_millis=timeout_millis)

        def shutdown(self, timeout_millis: float = 30_000, **kwargs: Any) -> None:
            inner.shutdown(timeout_millis=timeout_millis, **kwargs)

    return _AccountingExporter()


class OtelEmitter(Emitter):
    """Records samples into OTel instruments; the SDK reader owns the I/O thread."""

    sink_name = "otel"

    def __init__(
        self,
        endpoint: str,
        protocol: str = "grpc",
        export_interval_seconds: float = 10.0,
        application: str | None = None,
        max_consecutive_failures: int = 10,
        reader: Any = None,
        exporter: Any = None,
    ) -> None:
        super().__init__(application, max_consecutive_failures)
        self._flush_timeout_millis = min(export_interval_seconds * 1000, FLUSH_TIMEOUT_MILLIS)
        self._exporting = threading.Event()
        self._exporting.set()
        try:
            from opentelemetry.sdk.metrics import MeterProvider
            from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
            from opentelemetry.sdk.resources import Resource

            if reader is None:
                exporter = exporter or _metric_exporter(protocol, endpoint)
                reader = PeriodicExportingMetricReader(
                    _accounting_exporter(exporter, self._on_export, self._exporting.is_set),
                    export_interval_millis=export_interval_seconds * 1000,
                )
            resource = Resource.create({"service.name": application or "syncwatch"})
            self._provider = MeterProvider(
                resource=resource, metric_readers=[reader], views=create_views(),
            )
            self._instruments = create_instruments(self._provider.get_meter("syncwatch"))
        except Exception as exc:
            raise EmitterInitError(f"Cannot initialise OTel pipeline for {endpoint}: {exc}") from exc

        get_logger(__name__).info(
            "sink.otel.ready",
            endpoint=endpoint,
            protocol=protocol,
            export_interval_seconds=export_interval_seconds,
            metric_count=len(self._instruments),
        )

    def _on_export(self, error: BaseException | None) -> None:
        if error is None:
            self._record_success()
        else:
            self._record_fatal(error)

    def _on_disabled(self) -> None:
        # The reader keeps collecting; stop it shipping frozen values.
        self._exporting.clear()

    def _delivered(self) -> None:
        # Recording is local; health follows export outcomes instead.
        pass

    def _record(self, metric: MetricDef, value: float, tags: dict[str, str]) -> None:
        instrument = self._instruments[metric.name]
        if metric.type == MetricType.GAUGE:
            instrument.set(value, tags)
        elif metric.type == MetricType.COUNTER:
            instrument.add(value, tags)
        else:
            instrument.record(value, tags)

    def _flush(self) -> None:
        self._provider.force_flush(timeout_millis=self._flush_timeout_millis)

    def _shutdown(self) -> None:
        self._provider.shutdown()
