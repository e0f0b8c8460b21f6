"""Cron evaluation - expression + timezone to absolute instants.

Manifesto:
    A cron expression describes *wall-clock* fields in some timezone, but
    claims are keyed on *absolute* instants.  Evaluating in UTC and shifting
    breaks on every DST transition; evaluating with an aware datetime in
    croniter has historically produced duplicate or missing fires around
    transitions.  So evaluation is split in two explicit steps: croniter
    walks naive wall-clock times, then each wall time is resolved to an
    absolute instant with a fixed policy.

DST policy:
    - Ambiguous wall times (fall back, the hour that happens twice) resolve
      to the FIRST absolute occurrence (``fold=0``); the repeat is not fired.
    - Non-existent wall times (spring forward gap) are omitted.

Every replica applies the same policy to the same inputs, so every replica
computes the same instants, which is what the dedup keys rely on.

Tags:
    cron-spine, scheduling, cron, croniter, timezone, dst

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadDateError, croniter

from cronspine.core.errors import InvalidCronError, UnknownTimezoneError

_MINUTE = timedelta(minutes=1)
_SECOND = timedelta(seconds=1)


def validate_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        UnknownTimezoneError: If the zone database has no such zone
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise UnknownTimezoneError(name, cause=e) from e


def parse_cron(expression: str) -> CronExpression:
    """Parse and validate a cron expression.

    Accepts the classic 5 fields, 6 fields where the last one is seconds
    (croniter convention), and the ``@hourly`` style aliases.

    Raises:
        InvalidCronError: If the expression is malformed
    """
    if not isinstance(expression, str):
        raise InvalidCronError(repr(expression))

    normalized = " ".join(expression.split())
    if not normalized:
        raise InvalidCronError(expression)

    if normalized.startswith("@"):
        field_count = 5
    else:
        field_count = len(normalized.split(" "))
        if field_count not in (5, 6):
            raise InvalidCronError(expression)

    if not croniter.is_valid(normalized):
        raise InvalidCronError(expression)

    return CronExpression(expression=normalized, has_seconds=field_count == 6)


def _resolve_wall_time(wall: datetime, zone: tzinfo) -> datetime | None:
    """Map a naive wall-clock time in ``zone`` to an aware UTC instant.

    Returns ``None`` when the wall time does not exist in that zone.
    """
    local = wall.replace(tzinfo=zone, fold=0)
    instant = local.astimezone(UTC)
    if instant.astimezone(zone).replace(tzinfo=None) != wall:
        return None
    return instant


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware, got naive {value!r}")


@dataclass(frozen=True)
class CronExpression:
    """A validated cron expression.

    Build via :func:`parse_cron`; constructing directly skips validation.
    """

    expression: str
    has_seconds: bool = False

    @property
    def granularity(self) -> timedelta:
        """Smallest step between two possible fires."""
        return _SECOND if self.has_seconds else _MINUTE

    def floor(self, value: datetime) -> datetime:
        """Truncate an aware datetime to this expression's granularity."""
        _require_aware(value, "value")
        value = value.astimezone(UTC).replace(microsecond=0)
        if not self.has_seconds:
            value = value.replace(second=0)
        return value

    def _instants_from(self, zone: tzinfo, start: datetime):
        """Yield resolved instants >= ``start``, strictly ascending.

        With ``fold=0`` resolution, wall time -> instant is strictly
        increasing over existing wall times, and no wall time earlier than
        ``start``'s own wall reading can resolve to ``start`` or later.
        """
        wall_start = start.astimezone(zone).replace(tzinfo=None, microsecond=0)
        it = croniter(self.expression, wall_start - _SECOND)
        while True:
            try:
                wall = it.get_next(datetime)
            except CroniterBadDateError:
                return
            instant = _resolve_wall_time(wall, zone)
            if instant is None or instant < start:
                continue
            yield instant

    def instants_between(
        self,
        zone: tzinfo,
        start: datetime,
        end: datetime,
    ) -> list[datetime]:
        """All instants matching the expression in half-open ``[start, end)``.

        Args:
            zone: Timezone whose wall clock the fields describe
            start: Inclusive lower bound (aware)
            end: Exclusive upper bound (aware)

        Returns:
            Strictly ascending list of aware UTC datetimes
        """
        _require_aware(start, "start")
        _require_aware(end, "end")
        if end <= start:
            return []

        found: list[datetime] = []
        for instant in self._instants_from(zone, start):
            if instant >= end:
                break
            found.append(instant)
        return found

    def next_instants(self, zone: tzinfo, after: datetime, count: int = 5) -> list[datetime]:
        """The next ``count`` instants strictly after ``after`` (for previews)."""
        _require_aware(after, "after")
        result: list[datetime] = []
        for instant in self._instants_from(zone, after):
            if instant <= after:
                continue
            result.append(instant)
            if len(result) >= count:
                break
        return result


def evaluate(
    expression: str,
    timezone: str,
    start: datetime,
    end: datetime,
) -> list[datetime]:
    """Instants of ``expression`` in ``timezone`` within ``[start, end)``.

    Convenience wrapper that validates both inputs on every call; hot paths
    keep a parsed :class:`CronExpression` and zone instead.
    """
    return parse_cron(expression).instants_between(validate_timezone(timezone), start, end)


__all__ = [
    "CronExpression",
    "parse_cron",
    "validate_timezone",
    "evaluate",
]
