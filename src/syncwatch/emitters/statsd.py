"""statsd emitter: one DogStatsD datagram per sample over UDP.

Wire format:
    <name>:<value>|<type>|#<key>:<value>,<key>:<value>

    type: g (gauge), c (counter), d (distribution)

Dimensions become tags in schema order, followed by the application tag.
Each sample is its own packet, so gauge ordering on the wire matches
emission order. There is no acknowledgement; failures are only counted.
"""

from __future__ import annotations

import re
import socket

from syncwatch.catalog import MetricDef, MetricType
from syncwatch.emitters.base import Emitter
from syncwatch.errors import EmitterInitError, SinkFatal, SinkTransient
from syncwatch.logging import get_logger

_TYPE_CODES = {
    MetricType.GAUGE: "g",
    MetricType.COUNTER: "c",
    MetricType.DISTRIBUTION: "d",
}

_TAG_UNSAFE = re.compile(r"[,|#\s]")


def _sanitize(text: str) -> str:
    return _TAG_UNSAFE.sub("_", text)


def _format_value(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


def format_line(metric: MetricDef, value: float, tags: dict[str, str]) -> str:
    """Encode one sample as a DogStatsD line."""
    line = f"{metric.name}:{_format_value(value)}|{_TYPE_CODES[metric.type]}"
    if tags:
        line += "|#" + ",".join(f"{_sanitize(k)}:{_sanitize(v)}" for k, v in tags.items())
    return line


class StatsdEmitter(Emitter):
    """Sends each sample as a UDP datagram to a statsd/DogStatsD agent."""

    sink_name = "statsd"

    def __init__(
        self,
        host: str,
        port: int,
        application: str | None = None,
        max_consecutive_failures: int = 10,
    ) -> None:
        super().__init__(application, max_consecutive_failures)
        self._address = (host, port)
        try:
            family, socktype, proto, _, sockaddr = socket.getaddrinfo(
                host, port, type=socket.SOCK_DGRAM
            )[0]
            sock = socket.socket(family, socktype, proto)
        except OSError as exc:
            raise EmitterInitError(f"Cannot open statsd socket to {host}:{port}: {exc}") from exc
        try:
            sock.setblocking(False)
            sock.connect(sockaddr)
        except OSError as exc:
            sock.close()
            raise EmitterInitError(f"Cannot open statsd socket to {host}:{port}: {exc}") from exc
        self._sock: socket.socket | None = sock
        get_logger(__name__).info("sink.statsd.ready", host=host, port=port)

    def _record(self, metric: MetricDef, value: float, tags: dict[str, str]) -> None:
        if self._sock is None:
            raise SinkFatal("statsd socket is closed")
        payload = format_line(metric, value, tags).encode("utf-8")
        try:
            self._sock.send(payload)
        except (BlockingIOError, InterruptedError) as exc:
            raise SinkTransient(f"statsd send would block: {exc}") from exc
        except OSError as exc:
            raise SinkFatal(f"statsd send to {self._address[0]}:{self._address[1]} failed: {exc}") from exc

    def _shutdown(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
