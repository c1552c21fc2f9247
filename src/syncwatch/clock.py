"""Clocks: wall time for database comparisons, monotonic time for cadence.

The two are never mixed. Repository queries receive ``now()`` as a
parameter; the reporter schedules ticks from ``monotonic()``.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime: ...

    def monotonic(self) -> float: ...


class SystemClock:
    """Process clock: timezone-aware UTC wall time plus time.monotonic()."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()
