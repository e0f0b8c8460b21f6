"""Schedule definitions and the immutable registry snapshot.

Manifesto:
    Readers of the schedule set (every tick, on every worker thread) must
    never see a half-applied reconfiguration.  So a ``Schedule`` is frozen
    the moment it is validated, and a ``ScheduleRegistry`` is a read-only
    snapshot: reconfiguring means building a new registry and swapping the
    reference, never editing the old one.

Validation happens here, at load time: bad cron syntax, unknown
timezones and duplicate names raise before the scheduler loop starts.

Tags:
    cron-spine, scheduling, registry, immutable-snapshot, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_serializer,
    field_validator,
)

from cronspine.core.errors import DuplicateScheduleError, ScheduleLoadError
from cronspine.core.scheduling.cron import CronExpression, parse_cron, validate_timezone


def _freeze(value: Any) -> Any:
    """Read-only deep copy: mappings become proxies, sequences tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    """Plain, JSON-ready copy of a frozen value."""
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_thaw(v) for v in value]
    return value


class Schedule(BaseModel):
    """One configured periodic job.

    Attributes:
        name: Unique identity; part of every dedup key
        cron: 5-field cron, or 6-field with trailing seconds
        timezone: IANA zone whose wall clock ``cron`` describes
        queue: Target queue name
        job_class: Job class/handler name understood by the worker
        args: Positional arguments passed to the job
        kwargs: Keyword arguments passed to the job
        description: Free text, shown by the CLI
        enabled: Disabled schedules are kept in the registry but never ticked
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    cron: str
    timezone: str = "UTC"
    queue: str = Field(default="default", min_length=1)
    job_class: str = Field(..., min_length=1)
    args: tuple[Any, ...] = Field(default=(), validate_default=True)
    kwargs: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    description: str | None = None
    enabled: bool = True

    _expression: CronExpression = PrivateAttr()
    _zone: ZoneInfo = PrivateAttr()

    @field_validator("cron")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        return parse_cron(value).expression

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        validate_timezone(value)
        return value

    @field_validator("args", "kwargs")
    @classmethod
    def _freeze_payload(cls, value: Any) -> Any:
        return _freeze(value)

    @field_serializer("args", "kwargs")
    def _serialize_payload(self, value: Any) -> Any:
        return _thaw(value)

    def model_post_init(self, __context: Any) -> None:
        self._expression = parse_cron(self.cron)
        self._zone = validate_timezone(self.timezone)

    @property
    def expression(self) -> CronExpression:
        return self._expression

    @property
    def zone(self) -> ZoneInfo:
        return self._zone

    def instants_between(self, start: datetime, end: datetime) -> list[datetime]:
        """Instants of this schedule in ``[start, end)``, ascending UTC."""
        return self.expression.instants_between(self.zone, start, end)

    def next_instants(self, after: datetime, count: int = 5) -> list[datetime]:
        return self.expression.next_instants(self.zone, after, count)

    def payload_template(self) -> dict[str, Any]:
        """JSON-ready job fields that do not depend on the instant."""
        return {
            "class": self.job_class,
            "args": _thaw(self.args),
            "kwargs": _thaw(self.kwargs),
            "queue": self.queue,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, name: str | None = None) -> Schedule:
        """Build a schedule from loosely-typed config, raising load errors.

        Accepts ``class`` as an alias of ``job_class``.
        """
        data = dict(data)
        if name is not None:
            data.setdefault("name", name)
        if "class" in data and "job_class" not in data:
            data["job_class"] = data.pop("class")

        try:
            return cls(**data)
        except ScheduleLoadError as e:
            raise e.with_context(schedule=data.get("name"))
        except ValidationError as e:
            raise ScheduleLoadError(
                f"Invalid schedule {data.get('name')!r}: {e}",
                schedule=data.get("name"),
                cause=e,
            ) from e


class ScheduleRegistry:
    """Read-only snapshot of the configured schedules.

    Example:
        >>> registry = ScheduleRegistry([
        ...     Schedule(name="nightly", cron="0 2 * * *", job_class="Report"),
        ... ])
        >>> registry.get("nightly").queue
        'default'
    """

    __slots__ = ("_by_name",)

    def __init__(self, schedules: Iterable[Schedule] = ()) -> None:
        by_name: dict[str, Schedule] = {}
        for schedule in schedules:
            if schedule.name in by_name:
                raise DuplicateScheduleError(schedule.name)
            by_name[schedule.name] = schedule
        object.__setattr__(self, "_by_name", MappingProxyType(dict(sorted(by_name.items()))))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("ScheduleRegistry is immutable; build a new one instead")

    def all(self) -> tuple[Schedule, ...]:
        """Every schedule, sorted by name."""
        return tuple(self._by_name.values())

    def enabled(self) -> tuple[Schedule, ...]:
        return tuple(s for s in self._by_name.values() if s.enabled)

    def get(self, name: str) -> Schedule:
        """Look up a schedule by name.

        Raises:
            KeyError: If no schedule has that name
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Schedule not found: {name}") from None

    def names(self) -> tuple[str, ...]:
        return tuple(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Schedule]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def __repr__(self) -> str:
        return f"ScheduleRegistry({list(self._by_name)!r})"


__all__ = ["Schedule", "ScheduleRegistry"]
