"""Process-wide emitter cell for library callers.

    initialize(emitter)  set once at startup; a second call is an error
    get_emitter()        the initialised emitter, or a NoopEmitter (warns)
    is_initialized()
    reset()              tests only: shuts the held emitter down

The reporter itself passes its emitter explicitly; this cell exists for
code that emits without a handle to it.
"""

from __future__ import annotations

from syncwatch.emitters.base import Emitter
from syncwatch.errors import MetricClientError
from syncwatch.logging import get_logger

_emitter: Emitter | None = None


def initialize(emitter: Emitter) -> Emitter:
    global _emitter

    if _emitter is not None:
        raise MetricClientError(
            f"Metric client already initialised with the {_emitter.sink_name!r} sink"
        )
    _emitter = emitter
    get_logger(__name__).info("metric_client.initialized", sink=emitter.sink_name)
    return emitter


def get_emitter() -> Emitter:
    if _emitter is not None:
        return _emitter

    from syncwatch.emitters.noop import NoopEmitter

    get_logger(__name__).warning(
        "metric_client.uninitialized",
        hint="Call metric_client.initialize() at startup; samples are discarded",
    )
    return NoopEmitter()


def is_initialized() -> bool:
    return _emitter is not None


def reset() -> None:
    """Reset for testing."""
    global _emitter

    if _emitter is not None:
        _emitter.shutdown()
    _emitter = None
