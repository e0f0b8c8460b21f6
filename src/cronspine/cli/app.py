"""
Root Typer application for the cron-spine CLI.

``cronspine run`` is what each replica executes; the other commands are for
operators (validating schedule files, peeking at queues, checking the store).
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from types import FrameType

import typer
from typer import Typer

from cronspine.cli.queue import app as queue_app
from cronspine.cli.schedules import app as schedules_app
from cronspine.cli.utils import (
    console,
    err_console,
    fail,
    load_registry,
    load_settings,
    output_item,
    resolve_schedules_path,
)
from cronspine.core.errors import CronSpineError, ScheduleLoadError
from cronspine.core.logging import configure_logging, get_logger
from cronspine.core.scheduling import create_scheduler, default_replica_id
from cronspine.core.scheduling.health import check_store_health
from cronspine.core.scheduling.loader import load_registry_from_yaml
from cronspine.core.scheduling.service import SchedulerService
from cronspine.core.scheduling.store import create_store

logger = get_logger(__name__)

app = Typer(
    name="cronspine",
    help="cron-spine — distributed, idempotent cron job enqueuer.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from cronspine import __version__

        typer.echo(f"cron-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cron-spine CLI — run the scheduler, inspect schedules and queues."""


app.add_typer(schedules_app, name="schedules", help="Inspect and validate schedules.")
app.add_typer(queue_app, name="queue", help="Inspect enqueued jobs.")


# ── run ──────────────────────────────────────────────────────────────────


def _install_signal_handlers(service: SchedulerService, schedules_path: Path) -> None:
    """SIGINT/SIGTERM shut down gracefully; SIGHUP reloads the schedule file."""

    def _shutdown(signum: int, frame: FrameType | None) -> None:
        logger.info("cli.signal_shutdown", signal=signal.Signals(signum).name)
        service.request_shutdown()

    def _reload(signum: int, frame: FrameType | None) -> None:
        try:
            registry = load_registry_from_yaml(schedules_path)
        except (ScheduleLoadError, FileNotFoundError) as e:
            logger.error("cli.reload_failed", path=str(schedules_path), error=str(e))
            return
        service.replace_registry(registry)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    sighup = getattr(signal, "SIGHUP", None)
    if sighup is not None:
        signal.signal(sighup, _reload)


@app.command("run")
def run(
    schedules: Path | None = typer.Option(None, "--schedules", "-s", help="Schedule YAML file"),
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit."),
    json_out: bool = typer.Option(False, "--json", help="With --once, print the tick report as JSON."),
) -> None:
    """Run the scheduler loop on this replica."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    path = resolve_schedules_path(schedules, settings)
    registry = load_registry(path)

    try:
        store = create_store(settings)
    except CronSpineError as e:
        fail(e)

    service = create_scheduler(settings, registry, store)
    logger.info(
        "cli.run",
        replica=settings.replica_id or default_replica_id(),
        schedules=len(registry),
        window_seconds=settings.missed_jobs_window_seconds,
        tick_seconds=settings.tick_seconds,
    )

    try:
        if once:
            report = asyncio.run(service.tick())
            output_item(report, as_json=json_out, title=f"Tick {report.tick}")
            return

        _install_signal_handlers(service, path)
        service.run_forever()
    except CronSpineError as e:
        fail(e)
    finally:
        store.close()


# ── health ───────────────────────────────────────────────────────────────


@app.command("health")
def health(
    drift_threshold_ms: float = typer.Option(1000.0, "--drift-threshold-ms"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Ping the store and report clock drift against it."""
    settings = load_settings()
    try:
        store = create_store(settings)
    except CronSpineError as e:
        fail(e)

    try:
        report = check_store_health(store, drift_threshold_ms=drift_threshold_ms)
    finally:
        store.close()

    output_item(report, as_json=json_out, title="Store health")
    if not json_out:
        for warning in report.warnings:
            console.print(f"[yellow]warning[/yellow]: {warning}")
        for error in report.errors:
            err_console.print(f"[bold red]error[/bold red]: {error}")
    if not report.healthy:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
