"""Error taxonomy for the reporter.

ConfigError is fatal at startup. QueryFailure is isolated per indicator.
SinkTransient and SinkFatal are raised by emitter backends and absorbed by
the Emitter base class; they never leave the emitter.
"""

from __future__ import annotations


class SyncwatchError(Exception):
    """Base class for all syncwatch errors."""


class ConfigError(SyncwatchError):
    """Missing or invalid configuration. Fatal at startup (exit code 1)."""


class QueryFailure(SyncwatchError):
    """A repository operation failed on the database side."""

    def __init__(self, kind: str, cause: BaseException) -> None:
        super().__init__(f"{kind} failed: {cause!r}")
        self.kind = kind
        self.cause = cause


class SinkError(SyncwatchError):
    """Base class for backend delivery failures."""


class SinkTransient(SinkError):
    """A single delivery failed; the backend is expected to recover."""


class SinkFatal(SinkError):
    """The backend rejected or could not be reached; counts toward degradation."""


class EmitterInitError(SyncwatchError):
    """The selected emitter could not be constructed (exit code 2)."""


class InvalidDimensions(ValueError):
    """A sample carried dimensions that do not match its metric schema."""

    def __init__(
        self,
        metric: str,
        missing: list[str] | None = None,
        extra: list[str] | None = None,
        detail: str | None = None,
    ) -> None:
        parts = []
        if missing:
            parts.append(f"missing {missing}")
        if extra:
            parts.append(f"unexpected {extra}")
        if detail:
            parts.append(detail)
        super().__init__(f"{metric}: " + ", ".join(parts))
        self.metric = metric
        self.missing = missing or []
        self.extra = extra or []


class MetricClientError(SyncwatchError):
    """The process-wide metric client was initialised twice."""
