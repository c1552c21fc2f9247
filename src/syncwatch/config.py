"""Reporter configuration, env-var driven.

All settings have defaults except the ones the selected sink requires.
Construction never talks to the network; validate() is the fail-fast gate
called once at startup.

Sink selection:
    SYNCWATCH_SINK=none (default) | statsd | otel

    statsd needs SYNCWATCH_STATSD_HOST + SYNCWATCH_STATSD_PORT
    (DD_AGENT_HOST / DD_DOGSTATSD_PORT are honoured as fallbacks).
    otel needs SYNCWATCH_OTEL_ENDPOINT (or OTEL_EXPORTER_OTLP_ENDPOINT).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

from syncwatch.errors import ConfigError

SINKS = ("statsd", "otel", "none")
OTEL_PROTOCOLS = ("grpc", "http/protobuf")


def _env(*names: str, default: str | None = None) -> str | None:
    """First non-empty value among ``names``."""
    for name in names:
        raw = os.environ.get(name)
        if raw is not None and raw.strip() != "":
            return raw.strip()
    return default


def _int_env(*names: str, default: int | None = None) -> int | None:
    """Parse an integer from the environment with a helpful error on bad input."""
    raw = _env(*names)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as err:
        raise ConfigError(f"{names[0]}={raw!r} is not a valid integer") from err


def _float_env(*names: str, default: float | None = None) -> float | None:
    raw = _env(*names)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as err:
        raise ConfigError(f"{names[0]}={raw!r} is not a valid number") from err


def _list_env(name: str, default: str) -> tuple[str, ...]:
    raw = _env(name, default=default) or ""
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass
class ReporterConfig:
    """Everything the reporter process needs, read from SYNCWATCH_* variables."""

    # --- Sink selection ---
    sink: str = field(default_factory=lambda: (_env("SYNCWATCH_SINK", default="none") or "none").lower())

    statsd_host: str | None = field(
        default_factory=lambda: _env("SYNCWATCH_STATSD_HOST", "DD_AGENT_HOST")
    )
    statsd_port: int | None = field(
        default_factory=lambda: _int_env("SYNCWATCH_STATSD_PORT", "DD_DOGSTATSD_PORT")
    )

    otel_endpoint: str | None = field(
        default_factory=lambda: _env("SYNCWATCH_OTEL_ENDPOINT", "OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    otel_protocol: str = field(
        default_factory=lambda: _env("SYNCWATCH_OTEL_PROTOCOL", default="grpc") or "grpc"
    )
    otel_export_interval_seconds: float = field(
        default_factory=lambda: _float_env("SYNCWATCH_OTEL_EXPORT_INTERVAL_SECONDS", default=10.0)
    )

    # --- Loop ---
    cadence_seconds: float = field(
        default_factory=lambda: _float_env("SYNCWATCH_CADENCE_SECONDS", default=15.0)
    )
    tick_deadline_seconds: float | None = field(
        default_factory=lambda: _float_env("SYNCWATCH_TICK_DEADLINE_SECONDS")
    )

    application_tag: str | None = field(
        default_factory=lambda: _env("SYNCWATCH_APPLICATION_TAG", default="metrics-reporter")
    )
    max_consecutive_sink_failures: int = field(
        default_factory=lambda: _int_env("SYNCWATCH_MAX_CONSECUTIVE_SINK_FAILURES", default=10)
    )

    # --- Database ---
    database_url: str = field(
        default_factory=lambda: _env(
            "SYNCWATCH_DATABASE_URL", default="postgresql://localhost:5432/airbyte"
        )
    )
    db_pool_max_size: int = field(
        default_factory=lambda: _int_env("SYNCWATCH_DB_POOL_MAX_SIZE", default=4)
    )

    # --- Known dimension values (zero baselines) ---
    known_queues: tuple[str, ...] = field(
        default_factory=lambda: _list_env("SYNCWATCH_KNOWN_QUEUES", "SYNC,AWS_PARIS_SYNC")
    )
    known_geographies: tuple[str, ...] = field(
        default_factory=lambda: _list_env("SYNCWATCH_GEOGRAPHIES", "AUTO,US,EU")
    )

    # --- Logging: formatter x destination ---
    log_formatter: str = field(
        default_factory=lambda: _env("SYNCWATCH_LOG_FORMATTER", default="structlog")
    )  # "structlog" | "stdlib"
    log_destination: str = field(
        default_factory=lambda: _env("SYNCWATCH_LOG_DESTINATION", default="stderr")
    )  # "stderr" | "jsonl"
    log_level: str = field(default_factory=lambda: _env("SYNCWATCH_LOG_LEVEL", default="INFO"))
    log_format: str = field(
        default_factory=lambda: _env("SYNCWATCH_LOG_FORMAT", default="json")
    )  # "json" | "console"
    log_path: str | None = field(default_factory=lambda: _env("SYNCWATCH_LOG_PATH"))

    @property
    def effective_tick_deadline(self) -> float:
        """Per-query deadline: explicit value, else one second under the cadence."""
        if self.tick_deadline_seconds is not None:
            return self.tick_deadline_seconds
        if self.cadence_seconds > 1:
            return self.cadence_seconds - 1
        return self.cadence_seconds

    def validate(self) -> ReporterConfig:
        """Raise ConfigError on any setting the process cannot start with."""
        if self.sink not in SINKS:
            raise ConfigError(f"Unknown sink: {self.sink!r}. Available: {list(SINKS)}")

        if self.sink == "statsd":
            if not self.statsd_host or self.statsd_port is None:
                raise ConfigError(
                    "sink=statsd requires SYNCWATCH_STATSD_HOST and SYNCWATCH_STATSD_PORT"
                )
            if not 0 < self.statsd_port < 65536:
                raise ConfigError(f"statsd port out of range: {self.statsd_port}")

        if self.sink == "otel":
            if not self.otel_endpoint:
                raise ConfigError("sink=otel requires SYNCWATCH_OTEL_ENDPOINT")
            if self.otel_protocol not in OTEL_PROTOCOLS:
                raise ConfigError(
                    f"Unknown OTel protocol: {self.otel_protocol!r}. Available: {list(OTEL_PROTOCOLS)}"
                )
            if self.otel_export_interval_seconds <= 0:
                raise ConfigError("otel export interval must be positive")

        if self.cadence_seconds <= 0:
            raise ConfigError(f"cadence must be positive, got {self.cadence_seconds}")
        deadline = self.effective_tick_deadline
        if not 0 < deadline <= self.cadence_seconds:
            raise ConfigError(
                f"tick deadline must be in (0, cadence={self.cadence_seconds}], got {deadline}"
            )
        if self.max_consecutive_sink_failures <= 0:
            raise ConfigError("max consecutive sink failures must be positive")
        if self.db_pool_max_size <= 0:
            raise ConfigError("database pool size must be positive")
        if not self.known_geographies:
            raise ConfigError("at least one known geography is required")
        return self

    def redacted(self) -> dict[str, object]:
        """Effective settings with the database password masked, for display."""
        parts = urlsplit(self.database_url)
        url = self.database_url
        if parts.password:
            netloc = parts.netloc.replace(f":{parts.password}@", ":***@")
            url = urlunsplit(parts._replace(netloc=netloc))
        return {
            "sink": self.sink,
            "statsd_host": self.statsd_host,
            "statsd_port": self.statsd_port,
            "otel_endpoint": self.otel_endpoint,
            "otel_protocol": self.otel_protocol,
            "otel_export_interval_seconds": self.otel_export_interval_seconds,
            "cadence_seconds": self.cadence_seconds,
            "tick_deadline_seconds": self.effective_tick_deadline,
            "application_tag": self.application_tag,
            "max_consecutive_sink_failures": self.max_consecutive_sink_failures,
            "database_url": url,
            "db_pool_max_size": self.db_pool_max_size,
            "known_queues": list(self.known_queues),
            "known_geographies": list(self.known_geographies),
            "log_level": self.log_level,
        }
