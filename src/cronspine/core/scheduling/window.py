"""Missed-job window walker.

Every tick, for every schedule, the walker answers one question: which
scheduled instants inside the look-back window could still need enqueueing?
It does not know (or care) which of them were already enqueued; the claim
in the store settles that.  So a replica that was down for five minutes, or
a tick that hit a transient store failure, recovers automatically on the
next tick, as long as the instant is still inside the window.

Boundaries:
    The window is the CLOSED interval ``[now - window, now]``: an instant
    exactly ``window`` old is still due; one a second older is not.  The
    lower bound is raised to ``not_before`` when given (the schedule epoch),
    so a schedule deployed a minute ago does not backfill the last hour.

Tags:
    cron-spine, scheduling, missed-jobs, recovery, window

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cronspine.core.errors import InvalidConfigError
from cronspine.core.scheduling.registry import Schedule

DEFAULT_WINDOW = timedelta(hours=1)

# Half-open evaluator interval made closed at the upper end.
_CLOSED = timedelta(microseconds=1)


@dataclass(frozen=True, order=True)
class ScheduledInstant:
    """One occurrence of a schedule; never persisted."""

    schedule_name: str
    at: datetime

    def __str__(self) -> str:
        return f"{self.schedule_name}@{self.at.isoformat()}"


class MissedJobWindowWalker:
    """Enumerate due instants for a schedule inside the look-back window.

    Args:
        window: How far back to look; must be positive

    Raises:
        InvalidConfigError: If ``window`` is not positive
    """

    def __init__(self, window: timedelta = DEFAULT_WINDOW) -> None:
        if window <= timedelta(0):
            raise InvalidConfigError("missed_jobs_window", window, "Missed-jobs window must be positive")
        self.window = window

    def bounds(self, now: datetime, not_before: datetime | None = None) -> tuple[datetime, datetime]:
        """Closed ``(lower, upper)`` bounds walked for ``now``."""
        if now.tzinfo is None or now.utcoffset() is None:
            raise ValueError(f"now must be timezone-aware, got naive {now!r}")
        lower = now - self.window
        if not_before is not None and not_before > lower:
            lower = not_before
        return lower.astimezone(UTC), now.astimezone(UTC)

    def due_instants(
        self,
        schedule: Schedule,
        now: datetime,
        not_before: datetime | None = None,
    ) -> list[ScheduledInstant]:
        """Instants of ``schedule`` in ``[now - window, now]``, ascending.

        Args:
            schedule: Schedule to evaluate
            now: Current time (store clock), aware
            not_before: Optional extra lower bound (the schedule epoch)
        """
        lower, upper = self.bounds(now, not_before)
        if upper < lower:
            return []
        return [
            ScheduledInstant(schedule.name, at)
            for at in schedule.instants_between(lower, upper + _CLOSED)
        ]


__all__ = ["ScheduledInstant", "MissedJobWindowWalker", "DEFAULT_WINDOW"]
