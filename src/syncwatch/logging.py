"""Reporter logging: structlog events on top of the stdlib root logger.

Every module logs dotted events with keyword context:

    get_logger(__name__).warning("indicator.failed", indicator=name, error=err)

setup_logging(config) attaches one handler to the root logger, so asyncpg
and opentelemetry records come out in the same format as ours.

    SYNCWATCH_LOG_FORMATTER    structlog (default) | stdlib
    SYNCWATCH_LOG_FORMAT       json (default) | console
    SYNCWATCH_LOG_DESTINATION  stderr (default) | jsonl (appends to SYNCWATCH_LOG_PATH)

Before setup, and with the stdlib formatter, get_logger() returns a thin
stdlib adapter that takes the same ``event, **fields`` calls.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from syncwatch.config import ReporterConfig

FORMATTERS = ("structlog", "stdlib")
DESTINATIONS = ("stderr", "jsonl")
DEFAULT_LOG_PATH = "/tmp/syncwatch.jsonl"

_MANAGED = "_syncwatch_managed"

_structlog_active = False


class _EventJsonFormatter(logging.Formatter):
    """One JSON object per record; structured fields ride on ``record.fields``."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        line.update(getattr(record, "fields", {}))
        if record.exc_info and record.exc_info[1]:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


class _EventLogger:
    """stdlib logger that accepts structlog-style ``event, **fields`` calls."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _log(self, level: int, event: str, fields: dict[str, Any]) -> None:
        exc_info = fields.pop("exc_info", None)
        if self._logger.isEnabledFor(level):
            self._logger.log(level, event, exc_info=exc_info, extra={"fields": fields})

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        fields.setdefault("exc_info", True)
        self._log(logging.ERROR, event, fields)


def _structlog_formatter(log_format: str) -> logging.Formatter:
    """Route structlog through stdlib and render with ProcessorFormatter."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    if log_format == "console":
        renderer: Any = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()
    # foreign_pre_chain stamps asyncpg/opentelemetry records like our own.
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ],
    )


def _stdlib_formatter(log_format: str) -> logging.Formatter:
    if log_format == "console":
        return logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s %(fields)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            defaults={"fields": ""},
        )
    return _EventJsonFormatter()


def _handler(config: ReporterConfig) -> logging.Handler:
    if config.log_destination == "jsonl":
        path = Path(config.log_path or DEFAULT_LOG_PATH)
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path, mode="a", encoding="utf-8")
    return logging.StreamHandler(sys.stderr)


def setup_logging(config: ReporterConfig) -> None:
    """Attach the configured handler to the root logger, replacing only our previous one.

    Raises ValueError for an unknown formatter or destination and OSError
    when the JSONL file cannot be opened.
    """
    global _structlog_active

    if config.log_formatter not in FORMATTERS:
        raise ValueError(
            f"Unknown log formatter: {config.log_formatter!r}. Available: {list(FORMATTERS)}."
        )
    if config.log_destination not in DESTINATIONS:
        raise ValueError(
            f"Unknown log destination: {config.log_destination!r}. Available: {list(DESTINATIONS)}."
        )

    use_structlog = config.log_formatter == "structlog"
    handler = _handler(config)
    if use_structlog:
        handler.setFormatter(_structlog_formatter(config.log_format))
    else:
        handler.setFormatter(_stdlib_formatter(config.log_format))
    setattr(handler, _MANAGED, True)

    _detach_managed_handlers()
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    _structlog_active = use_structlog


def get_logger(name: str = "") -> Any:
    """Logger taking ``info("event", key=value)`` calls, usable before setup."""
    if _structlog_active:
        return structlog.get_logger(name)
    return _EventLogger(logging.getLogger(name))


def shutdown_logging() -> None:
    """Detach and close our root handler and fall back to the stdlib adapter."""
    global _structlog_active

    _detach_managed_handlers()
    _structlog_active = False


def _detach_managed_handlers() -> None:
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _MANAGED, False)]:
        root.removeHandler(handler)
        handler.flush()
        handler.close()
