"""
CLI utility helpers — output formatting, settings and store wiring.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from cronspine.core.errors import CronSpineError, MissingConfigError
from cronspine.core.scheduling.loader import load_registry_from_yaml
from cronspine.core.scheduling.registry import ScheduleRegistry
from cronspine.core.settings import CronSpineSettings, get_settings

console = Console()
err_console = Console(stderr=True)


# ── Settings / registry helpers ──────────────────────────────────────────


def load_settings() -> CronSpineSettings:
    """Read settings, exiting with a readable message when they are invalid."""
    try:
        return get_settings()
    except ValueError as e:
        err_console.print(f"[bold red]Invalid settings[/bold red]: {e}")
        raise typer.Exit(code=2) from e


def resolve_schedules_path(path: Path | None, settings: CronSpineSettings) -> Path:
    resolved = path or settings.schedules_file
    if resolved is None:
        fail(
            MissingConfigError(
                "schedules_file",
                "No schedule file; pass --schedules or set CRONSPINE_SCHEDULES_FILE",
            ),
            code=2,
        )
    return resolved


def load_registry(path: Path) -> ScheduleRegistry:
    """Load schedules, turning load errors into exit code 1."""
    try:
        return load_registry_from_yaml(path)
    except FileNotFoundError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e}")
        raise typer.Exit(code=1) from e
    except CronSpineError as e:
        fail(e)


def fail(error: CronSpineError, code: int = 1) -> NoReturn:
    """Print a cron-spine error and exit."""
    err_console.print(f"[bold red]Error[/bold red] ({type(error).__name__}): {error.message}")
    context = error.context.to_dict()
    if context:
        for k, v in context.items():
            err_console.print(f"  [cyan]{k}[/cyan]: {v}")
    raise typer.Exit(code=code)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_rows(rows: list[Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a list of rows as a Rich table or JSON."""
    if as_json:
        console.print_json(json.dumps([_to_dict(r) for r in rows], default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    _print_table(rows, title=title)


def output_item(item: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a single object as key-value pairs or JSON."""
    data = _to_dict(item)
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    _print_dict(data, title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
