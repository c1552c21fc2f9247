"""syncwatch: fleet-health metrics for a data-integration control plane.

Public API:
    Reporter(config, repository, emitter)  periodic query-and-emit loop
    MetricRepository(executor)             read-only indicator queries
    create_emitter(config)                 statsd / otel / none sink
    ReporterConfig()                       SYNCWATCH_* environment settings
    CATALOG                                every metric the reporter emits
"""

from syncwatch.catalog import CATALOG, MetricDef, MetricType, get_metric
from syncwatch.config import ReporterConfig
from syncwatch.emitters import Emitter, NoopEmitter, create_emitter
from syncwatch.errors import (
    ConfigError,
    EmitterInitError,
    InvalidDimensions,
    MetricClientError,
    QueryFailure,
    SinkFatal,
    SinkTransient,
    SyncwatchError,
)
from syncwatch.reporter import IndicatorBinding, Reporter, ReporterState, TickReport, default_bindings
from syncwatch.repository import MetricRepository

__all__ = [
    "CATALOG",
    "ConfigError",
    "Emitter",
    "EmitterInitError",
    "IndicatorBinding",
    "InvalidDimensions",
    "MetricClientError",
    "MetricDef",
    "MetricRepository",
    "MetricType",
    "NoopEmitter",
    "QueryFailure",
    "Reporter",
    "ReporterConfig",
    "ReporterState",
    "SinkFatal",
    "SinkTransient",
    "SyncwatchError",
    "TickReport",
    "create_emitter",
    "default_bindings",
    "get_metric",
]
