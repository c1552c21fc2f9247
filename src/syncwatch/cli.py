"""syncwatch CLI: typer-based entry point.

Commands:
    syncwatch run       Report on a fixed cadence until SIGINT/SIGTERM
    syncwatch once      Run a single tick and print what was emitted
    syncwatch config    Validate and print the effective configuration

Exit codes: 0 clean shutdown, 1 configuration error, 2 emitter init error.
"""

from __future__ import annotations

import asyncio
import json
import signal
from typing import TYPE_CHECKING, NoReturn

import typer

from syncwatch import metric_client
from syncwatch.config import ReporterConfig
from syncwatch.emitters import Emitter, create_emitter
from syncwatch.errors import ConfigError, EmitterInitError
from syncwatch.logging import get_logger, setup_logging, shutdown_logging

if TYPE_CHECKING:
    from syncwatch.db import QueryExecutor
    from syncwatch.repository import MetricRepository

EXIT_CONFIG_ERROR = 1
EXIT_EMITTER_INIT_ERROR = 2

app = typer.Typer(
    name="syncwatch",
    help="Report sync-job and connection health from the operational database.",
    no_args_is_help=True,
)


def _fail(msg: str, code: int) -> NoReturn:
    """Print an error message and exit."""
    typer.echo(f"Error: {msg}", err=True)
    raise typer.Exit(code)


def _load_config(sink: str | None = None, cadence: float | None = None) -> ReporterConfig:
    try:
        config = ReporterConfig()
        if sink is not None:
            config.sink = sink.lower()
        if cadence is not None:
            config.cadence_seconds = cadence
        return config.validate()
    except ConfigError as exc:
        _fail(str(exc), EXIT_CONFIG_ERROR)


def _start(config: ReporterConfig) -> Emitter:
    """Set up logging and build the emitter, mapping failures to exit codes."""
    try:
        setup_logging(config)
    except (ValueError, OSError) as exc:
        _fail(f"logging: {exc}", EXIT_CONFIG_ERROR)
    try:
        return create_emitter(config)
    except EmitterInitError as exc:
        get_logger(__name__).error("sink.init.failed", sink=config.sink, error=str(exc))
        shutdown_logging()
        _fail(str(exc), EXIT_EMITTER_INIT_ERROR)


def _repository(config: ReporterConfig, pool: QueryExecutor) -> MetricRepository:
    from syncwatch.repository import MetricRepository

    return MetricRepository(
        pool,
        known_queues=config.known_queues,
        known_geographies=config.known_geographies,
    )


async def _serve(config: ReporterConfig, emitter: Emitter) -> None:
    from syncwatch.db import create_pool
    from syncwatch.reporter import Reporter

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    pool = None
    try:
        pool = await create_pool(config)
        reporter = Reporter(config, _repository(config, pool), emitter)
        await reporter.run(stop)
    finally:
        emitter.shutdown()
        if pool is not None:
            await pool.close()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def _tick_once(config: ReporterConfig, emitter: Emitter) -> dict:
    from syncwatch.db import create_pool
    from syncwatch.reporter import Reporter

    pool = None
    try:
        pool = await create_pool(config)
        reporter = Reporter(config, _repository(config, pool), emitter)
        report = await reporter.tick()
        return report.as_dict()
    finally:
        emitter.shutdown()
        if pool is not None:
            await pool.close()


@app.command()
def run(
    sink: str = typer.Option(None, "--sink", help="Override SYNCWATCH_SINK: statsd, otel or none."),
    cadence: float = typer.Option(None, "--cadence", help="Seconds between tick starts."),
) -> None:
    """Query and emit every indicator on a fixed cadence until interrupted."""
    config = _load_config(sink, cadence)
    emitter = _start(config)
    metric_client.initialize(emitter)
    try:
        asyncio.run(_serve(config, emitter))
    finally:
        metric_client.reset()
        get_logger(__name__).info("syncwatch.exited")
        shutdown_logging()


@app.command()
def once(
    sink: str = typer.Option(None, "--sink", help="Override SYNCWATCH_SINK: statsd, otel or none."),
) -> None:
    """Run a single tick and print the emitted samples as JSON."""
    config = _load_config(sink)
    emitter = _start(config)
    try:
        report = asyncio.run(_tick_once(config, emitter))
    finally:
        shutdown_logging()
    typer.echo(json.dumps(report, indent=2, default=str))


@app.command("config")
def show_config() -> None:
    """Validate the environment and print the effective settings."""
    config = _load_config()
    typer.echo(json.dumps(config.redacted(), indent=2))


def main() -> None:
    """Entry point for the syncwatch CLI."""
    app()
