"""Shared fixtures: fixed clocks, recording emitters, mocked executors."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from syncwatch.catalog import MetricDef
from syncwatch.emitters.base import Emitter

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


class FixedClock:
    """Wall time pinned to NOW; monotonic time advances only when told to."""

    def __init__(self, now: datetime = NOW, monotonic: float = 1000.0) -> None:
        self._now = now
        self._monotonic = monotonic

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._monotonic += seconds


class RecordingEmitter(Emitter):
    """Keeps every delivered sample as (metric name, value, tags)."""

    sink_name = "recording"

    def __init__(self, application: str | None = None, max_consecutive_failures: int = 10) -> None:
        super().__init__(application, max_consecutive_failures)
        self.samples: list[tuple[str, float, dict[str, str]]] = []
        self.flushes = 0
        self.shutdowns = 0

    def _record(self, metric: MetricDef, value: float, tags: dict[str, str]) -> None:
        self.samples.append((metric.name, value, dict(tags)))

    def _flush(self) -> None:
        self.flushes += 1

    def _shutdown(self) -> None:
        self.shutdowns += 1

    def values(self, name: str) -> list[tuple[float, dict[str, str]]]:
        return [(v, t) for n, v, t in self.samples if n == name]


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def recording_emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture()
def executor() -> AsyncMock:
    """Mock asyncpg pool: fetch/fetchrow/fetchval are AsyncMocks."""
    mock = AsyncMock()
    mock.fetch.return_value = []
    mock.fetchrow.return_value = None
    mock.fetchval.return_value = 0
    return mock


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Reset logging and the metric client cell around each test."""
    from syncwatch import metric_client
    from syncwatch.logging import shutdown_logging

    metric_client.reset()
    shutdown_logging()
    yield
    metric_client.reset()
    shutdown_logging()


@pytest.fixture()
def emitter_factory() -> type[RecordingEmitter]:
    return RecordingEmitter
