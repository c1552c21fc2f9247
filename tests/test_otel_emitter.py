"""Tests for the OTel sink: instrument creation, views, export accounting.

Uses InMemoryMetricReader or a fake exporter; no collector needed.
"""

from __future__ import annotations

import pytest

otel_sdk = pytest.importorskip("opentelemetry.sdk")

from opentelemetry.sdk.metrics import MeterProvider  # noqa: E402
from opentelemetry.sdk.metrics.export import (  # noqa: E402
    InMemoryMetricReader,
    MetricExporter,
    MetricExportResult,
)

from syncwatch.catalog import (  # noqa: E402
    CATALOG,
    CONNECTION_ACTIVE_PER_WORKSPACE,
    JOB_ORPHAN_RUNNING,
    JOB_RUNNING_BY_QUEUE,
    JOB_UNUSUALLY_LONG_RUNNING,
    MetricType,
)
from syncwatch.config import ReporterConfig  # noqa: E402
from syncwatch.emitters import create_emitter  # noqa: E402
from syncwatch.emitters import otel as otel_module  # noqa: E402
from syncwatch.emitters.otel import (  # noqa: E402
    OtelEmitter,
    _accounting_exporter,
    create_instruments,
    create_views,
)


class FakeExporter(MetricExporter):
    """Counts exports; returns or raises whatever ``outcome`` says."""

    def __init__(self, outcome=MetricExportResult.SUCCESS) -> None:
        super().__init__()
        self.outcome = outcome
        self.exports = 0
        self.shut_down = False

    def export(self, metrics_data, timeout_millis: float = 10_000, **kwargs):
        self.exports += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return True

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        self.shut_down = True


def _points(reader: InMemoryMetricReader, name: str) -> list:
    data = reader.get_metrics_data()
    if data is None:
        return []
    points = []
    for rm in data.resource_metrics:
        for sm in rm.scope_metrics:
            for metric in sm.metrics:
                if metric.name == name:
                    points.extend(metric.data.data_points)
    return points


@pytest.fixture()
def reader():
    return InMemoryMetricReader()


@pytest.fixture()
def otel_emitter(reader):
    emitter = OtelEmitter("memory", application="metrics-reporter", reader=reader)
    yield emitter
    emitter.shutdown()


class TestCreateInstruments:
    def test_one_instrument_per_metric(self):
        meter = MeterProvider(metric_readers=[InMemoryMetricReader()]).get_meter("test")
        instruments = create_instruments(meter)
        assert set(instruments) == {m.name for m in CATALOG}

    def test_instrument_kinds(self):
        meter = MeterProvider(metric_readers=[InMemoryMetricReader()]).get_meter("test")
        instruments = create_instruments(meter)
        for m in CATALOG:
            method = {
                MetricType.GAUGE: "set",
                MetricType.COUNTER: "add",
                MetricType.DISTRIBUTION: "record",
            }[m.type]
            assert hasattr(instruments[m.name], method), m.name


class TestCreateViews:
    def test_one_view_per_distribution(self):
        distributions = [m for m in CATALOG if m.type == MetricType.DISTRIBUTION]
        assert len(create_views()) == len(distributions)


class TestOtelEmitter:
    def test_gauge_value_and_attributes(self, otel_emitter, reader):
        otel_emitter.gauge(JOB_RUNNING_BY_QUEUE, 3, {"queue": "SYNC"})
        (point,) = _points(reader, "job_running_by_queue")
        assert point.value == 3
        assert dict(point.attributes) == {"queue": "SYNC", "application": "metrics-reporter"}

    def test_gauge_overwrites(self, otel_emitter, reader):
        otel_emitter.gauge(JOB_ORPHAN_RUNNING, 5)
        otel_emitter.gauge(JOB_ORPHAN_RUNNING, 2)
        (point,) = _points(reader, "job_orphan_running")
        assert point.value == 2

    def test_counter_accumulates(self, otel_emitter, reader):
        dims = {"connection_id": "c1", "source_image": "s", "destination_image": "d"}
        otel_emitter.count(JOB_UNUSUALLY_LONG_RUNNING, 1, dims)
        otel_emitter.count(JOB_UNUSUALLY_LONG_RUNNING, 1, dims)
        (point,) = _points(reader, "job_unusually_long_running")
        assert point.value == 2

    def test_distribution_uses_catalog_buckets(self, otel_emitter, reader):
        for value in (1, 3, 40):
            otel_emitter.distribution(CONNECTION_ACTIVE_PER_WORKSPACE, value)
        (point,) = _points(reader, "connection_active_per_workspace")
        assert point.count == 3
        assert point.sum == 44
        assert list(point.explicit_bounds) == list(CONNECTION_ACTIVE_PER_WORKSPACE.buckets)

    def test_recording_does_not_touch_health(self, otel_emitter):
        otel_emitter._record_fatal(RuntimeError("export failed"))
        otel_emitter.gauge(JOB_ORPHAN_RUNNING, 1)
        assert otel_emitter.degraded

    def test_shutdown_idempotent(self, reader):
        emitter = OtelEmitter("memory", reader=reader)
        emitter.shutdown()
        emitter.shutdown()
        assert emitter.closed


class TestExportAccounting:
    def _emitter(self, exporter, **kwargs) -> OtelEmitter:
        return OtelEmitter(
            "memory", exporter=exporter, export_interval_seconds=3600, **kwargs
        )

    def test_successful_export(self):
        exporter = FakeExporter()
        emitter = self._emitter(exporter)
        emitter.gauge(JOB_ORPHAN_RUNNING, 1)
        emitter.flush()
        assert exporter.exports >= 1
        assert not emitter.degraded
        emitter.shutdown()
        assert exporter.shut_down

    def test_failed_export_is_fatal(self):
        exporter = FakeExporter(MetricExportResult.FAILURE)
        emitter = self._emitter(exporter)
        emitter.gauge(JOB_ORPHAN_RUNNING, 1)
        emitter.flush()
        assert emitter.degraded
        emitter.shutdown()

    def test_raising_export_is_fatal(self):
        exporter = FakeExporter(ConnectionError("collector unreachable"))
        emitter = self._emitter(exporter)
        emitter.gauge(JOB_ORPHAN_RUNNING, 1)
        emitter.flush()
        assert emitter.degraded
        emitter.shutdown()

    def test_wrapper_reports_each_outcome(self):
        outcomes = []
        inner = FakeExporter(MetricExportResult.FAILURE)
        wrapper = _accounting_exporter(inner, outcomes.append)
        assert wrapper.export(None) is MetricExportResult.FAILURE
        inner.outcome = MetricExportResult.SUCCESS
        assert wrapper.export(None) is MetricExportResult.SUCCESS
        assert outcomes[1] is None
        assert outcomes[0] is not None

    def test_consecutive_failures_disable(self):
        outcomes = []
        emitter = OtelEmitter("memory", reader=InMemoryMetricReader(), max_consecutive_failures=3)
        wrapper = _accounting_exporter(FakeExporter(MetricExportResult.FAILURE), emitter._on_export)
        for _ in range(3):
            outcomes.append(wrapper.export(None))
        assert emitter.disabled
        emitter.shutdown()

    def test_closed_wrapper_drops_batches(self):
        outcomes = []
        inner = FakeExporter()
        wrapper = _accounting_exporter(inner, outcomes.append, lambda: False)
        assert wrapper.export(None) is MetricExportResult.SUCCESS
        assert inner.exports == 0
        assert outcomes == []

    def test_nothing_exported_after_disable(self):
        exporter = FakeExporter(MetricExportResult.FAILURE)
        emitter = self._emitter(exporter, max_consecutive_failures=2)
        emitter.gauge(JOB_ORPHAN_RUNNING, 5)
        emitter.flush()
        emitter.flush()
        assert emitter.disabled
        emitter.gauge(JOB_ORPHAN_RUNNING, 0)

        # Collector is back: the stale 5 must not be shipped.
        exporter.outcome = MetricExportResult.SUCCESS
        exports = exporter.exports
        emitter._provider.force_flush()
        emitter.shutdown()
        assert exporter.exports == exports
        assert exporter.shut_down

    def test_flush_timeout_is_bounded(self):
        emitter = self._emitter(FakeExporter())
        assert emitter._flush_timeout_millis == otel_module.FLUSH_TIMEOUT_MILLIS
        emitter.shutdown()


class TestOtelFactory:
    def test_create_emitter_builds_otel(self, monkeypatch):
        exporter = FakeExporter()
        calls = []

        def fake_exporter(protocol, endpoint):
            calls.append((protocol, endpoint))
            return exporter

        monkeypatch.setattr(otel_module, "_metric_exporter", fake_exporter)
        cfg = ReporterConfig(
            sink="otel", otel_endpoint="http://collector:4318", otel_protocol="http/protobuf"
        )
        emitter = create_emitter(cfg)
        try:
            assert isinstance(emitter, OtelEmitter)
            assert calls == [("http/protobuf", "http://collector:4318")]
        finally:
            emitter.shutdown()

    def test_bad_reader_raises_init_error(self):
        from syncwatch.errors import EmitterInitError

        with pytest.raises(EmitterInitError):
            OtelEmitter("memory", reader=object())
