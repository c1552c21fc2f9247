"""Metric sinks: one Emitter per backend, chosen by ReporterConfig.sink.

    statsd  DogStatsD datagrams over UDP
    otel    OTLP push via the OpenTelemetry SDK
    none    discard (default)
"""

from __future__ import annotations

from syncwatch.config import ReporterConfig
from syncwatch.emitters.base import APPLICATION_DIMENSION, Emitter
from syncwatch.emitters.noop import NoopEmitter
from syncwatch.errors import ConfigError


def create_emitter(config: ReporterConfig) -> Emitter:
    """Build the emitter for ``config.sink``. Raises EmitterInitError on backend failure."""
    application = config.application_tag or None
    max_failures = config.max_consecutive_sink_failures

    if config.sink == "statsd":
        from syncwatch.emitters.statsd import StatsdEmitter

        return StatsdEmitter(
            config.statsd_host,
            config.statsd_port,
            application=application,
            max_consecutive_failures=max_failures,
        )

    if config.sink == "otel":
        from syncwatch.emitters.otel import OtelEmitter

        return OtelEmitter(
            config.otel_endpoint,
            protocol=config.otel_protocol,
            export_interval_seconds=config.otel_export_interval_seconds,
            application=application,
            max_consecutive_failures=max_failures,
        )

    if config.sink == "none":
        return NoopEmitter(application=application, max_consecutive_failures=max_failures)

    raise ConfigError(f"Unknown sink: {config.sink!r}")


__all__ = [
    "APPLICATION_DIMENSION",
    "Emitter",
    "NoopEmitter",
    "create_emitter",
]
