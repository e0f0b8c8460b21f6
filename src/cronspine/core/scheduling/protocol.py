"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  The scheduler is a "beat-as-poller": backends decide WHEN a tick happens,   │
│  SchedulerService decides WHAT a tick does.                                  │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌──────────────────────────┐        │
│   │  Thread Backend │ ─────────────────► │  SchedulerService        │        │
│   │  (default)      │                    │                          │        │
│   └─────────────────┘                    │  - read store clock      │        │
│                                          │  - walk missed-job window│        │
│   ┌─────────────────┐       tick()       │  - claim-and-push        │        │
│   │  Test harness   │ ─────────────────► │  - report outcomes       │        │
│   │  (await tick()) │                    └──────────────────────────┘        │
│   └─────────────────┘                                                         │
│                                                                               │
│  Responsibility split:                                                        │
│  - Backend: cadence, shutdown, stopping on fatal errors                      │
│  - Service: schedule evaluation and enqueueing                               │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback at
    the configured interval and stopping when asked (or when a tick raises
    a fatal error).  All schedule evaluation lives in SchedulerService.
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
    ) -> None:
        """Start the loop; the first tick runs immediately."""
        ...

    def request_stop(self) -> None:
        """Ask the loop to stop after the in-flight tick. Never blocks."""
        ...

    def stop(self) -> None:
        """Stop the loop, waiting (bounded) for the in-flight tick."""
        ...

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the loop exits; True if it did within ``timeout``."""
        ...

    @property
    def error(self) -> BaseException | None:
        """The fatal exception that stopped the loop, if any."""
        ...

    def health(self) -> dict[str, Any]:
        """Return backend health status.

        Returns:
            dict with at least:
                - healthy: bool, whether the loop is running
                - backend: str, backend name
                - tick_count: int, ticks started
                - last_tick: str | None, ISO timestamp of last tick
        """
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "error": self.error,
            **self.extra,
        }


__all__ = ["SchedulerBackend", "BackendHealth", "TickCallback"]
