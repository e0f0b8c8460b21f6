"""
CLI: ``cronspine schedules`` — inspect and validate the schedule file.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import typer
import yaml

from cronspine.cli.utils import (
    console,
    err_console,
    load_registry,
    load_settings,
    output_item,
    output_rows,
    resolve_schedules_path,
)
from cronspine.core.scheduling.loader import registry_to_dict

app = typer.Typer(no_args_is_help=True)

SchedulesOption = typer.Option(None, "--schedules", "-s", help="Schedule YAML file")


@app.command("list")
def list_schedules(
    schedules: Path | None = SchedulesOption,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List configured schedules."""
    settings = load_settings()
    registry = load_registry(resolve_schedules_path(schedules, settings))
    rows = [
        {
            "name": s.name,
            "cron": s.cron,
            "timezone": s.timezone,
            "queue": s.queue,
            "class": s.job_class,
            "enabled": s.enabled,
        }
        for s in registry
    ]
    output_rows(rows, as_json=json_out, title="Schedules")


@app.command("check")
def check_schedules(
    schedules: Path | None = SchedulesOption,
) -> None:
    """Validate the schedule file (cron syntax, timezones, unique names)."""
    settings = load_settings()
    path = resolve_schedules_path(schedules, settings)
    registry = load_registry(path)
    disabled = len(registry) - len(registry.enabled())
    console.print(
        f"[green]OK[/green] {path}: {len(registry)} schedule(s)"
        + (f", {disabled} disabled" if disabled else "")
    )


@app.command("preview")
def preview_schedule(
    name: str = typer.Argument(..., help="Schedule name"),
    count: int = typer.Option(5, "--count", "-n", min=1, max=1000),
    schedules: Path | None = SchedulesOption,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the next instants a schedule fires at."""
    settings = load_settings()
    registry = load_registry(resolve_schedules_path(schedules, settings))
    try:
        schedule = registry.get(name)
    except KeyError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e.args[0]}")
        raise typer.Exit(code=1) from e

    now = datetime.now(UTC)
    instants = schedule.next_instants(now, count)
    zone = schedule.zone
    rows = [
        {"utc": at.isoformat(), "local": at.astimezone(zone).isoformat()}
        for at in instants
    ]
    if json_out:
        output_item({"schedule": schedule.name, "instants": rows}, as_json=True)
        return
    output_rows(rows, title=f"{schedule.name} ({schedule.cron}, {schedule.timezone})")


@app.command("export")
def export_schedules(
    schedules: Path | None = SchedulesOption,
) -> None:
    """Print the validated schedule set in normalized ``ScheduleSet`` form."""
    settings = load_settings()
    registry = load_registry(resolve_schedules_path(schedules, settings))
    typer.echo(yaml.safe_dump(registry_to_dict(registry), sort_keys=False), nl=False)
