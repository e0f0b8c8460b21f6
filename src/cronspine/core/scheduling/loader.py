"""
YAML loader for schedule sets.

Loads the schedule registry from a YAML file (or an already-parsed dict).
All validation happens here, before the scheduler loop starts: a bad cron
expression, unknown timezone or duplicate name aborts the load.

File Format (YAML):
    apiVersion: cronspine.io/v1
    kind: ScheduleSet
    schedules:
      - name: nightly-report
        cron: "0 2 * * *"
        timezone: Europe/London
        queue: reports
        class: NightlyReportJob
        args: [full]
      - name: heartbeat
        cron: "*/30 * * * * *"      # sixth field = seconds
        class: HeartbeatJob

Short form (no header), a mapping of name to definition:
    nightly-report:
      cron: "0 2 * * *"
      class: NightlyReportJob
"""

from pathlib import Path
from typing import Any

import yaml

from cronspine.core.errors import InvalidConfigError, ScheduleLoadError
from cronspine.core.logging import get_logger
from cronspine.core.scheduling.registry import Schedule, ScheduleRegistry

logger = get_logger(__name__)

SUPPORTED_API_VERSIONS = {"cronspine.io/v1"}
KIND = "ScheduleSet"


def load_registry_from_yaml(path: Path | str) -> ScheduleRegistry:
    """
    Load a ScheduleRegistry from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ScheduleLoadError: If the YAML or any schedule is invalid
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Schedule file not found: {path}")

    logger.debug("loader.load_yaml", path=str(path))

    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ScheduleLoadError(f"Invalid YAML in {path}: {e}", cause=e) from e

    try:
        registry = load_registry_from_dict(data)
    except ScheduleLoadError as e:
        raise e.with_context(path=str(path))

    logger.info("loader.loaded", path=str(path), schedule_count=len(registry))
    return registry


def load_registry_from_dict(data: Any) -> ScheduleRegistry:
    """
    Build a ScheduleRegistry from parsed configuration.

    Accepts the ``ScheduleSet`` document, or the short name -> definition form.
    An empty document yields an empty registry.
    """
    if data is None:
        return ScheduleRegistry()

    if not isinstance(data, dict):
        raise ScheduleLoadError(f"Expected a mapping at the top level, got {type(data).__name__}")

    api_version = data.get("apiVersion")
    if api_version and api_version not in SUPPORTED_API_VERSIONS:
        raise InvalidConfigError(
            "apiVersion",
            api_version,
            f"Unsupported apiVersion: {api_version}. Supported: {sorted(SUPPORTED_API_VERSIONS)}",
        )

    kind = data.get("kind")
    if kind and kind != KIND:
        raise InvalidConfigError("kind", kind, f"Expected kind '{KIND}', got '{kind}'")

    if api_version or kind or "schedules" in data:
        entries = data.get("schedules") or []
    else:
        entries = data

    return ScheduleRegistry(_parse_entries(entries))


def _parse_entries(entries: Any) -> list[Schedule]:
    schedules = []

    if isinstance(entries, dict):
        for name, definition in entries.items():
            if not isinstance(definition, dict):
                raise ScheduleLoadError(
                    f"Schedule {name!r} must be a mapping, got {type(definition).__name__}",
                    schedule=str(name),
                )
            schedules.append(Schedule.from_dict(definition, name=str(name)))
        return schedules

    if isinstance(entries, list):
        for index, definition in enumerate(entries):
            if not isinstance(definition, dict):
                raise ScheduleLoadError(
                    f"Schedule #{index} must be a mapping, got {type(definition).__name__}"
                )
            schedules.append(Schedule.from_dict(definition))
        return schedules

    raise ScheduleLoadError(f"'schedules' must be a list or mapping, got {type(entries).__name__}")


def registry_to_dict(registry: ScheduleRegistry) -> dict[str, Any]:
    """Serialize a registry back to the ``ScheduleSet`` document form."""
    return {
        "apiVersion": "cronspine.io/v1",
        "kind": KIND,
        "schedules": [
            schedule.model_dump(mode="json", exclude_defaults=True) | {"name": schedule.name}
            for schedule in registry
        ],
    }


__all__ = [
    "load_registry_from_yaml",
    "load_registry_from_dict",
    "registry_to_dict",
    "SUPPORTED_API_VERSIONS",
]
