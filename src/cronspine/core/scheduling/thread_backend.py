"""Threading-based scheduler backend.

The default (and only shipped) timing backend.  One daemon thread runs an
event loop per tick, so the service's async tick stays usable from plain
synchronous code (CLI, tests, embedding applications).

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BACKEND                                                               │
│                                                                               │
│   start()                                                                     │
│      │                                                                        │
│      ▼                                                                        │
│   Daemon thread                                                               │
│      run tick now                                                             │
│      while not stop_event.wait(until next deadline):                          │
│          asyncio.run(tick_callback())                                         │
│          fatal exception? ──► record error, leave loop                        │
│                                                                               │
│   request_stop()  stop_event.set()            (signal-handler safe)           │
│   stop()          request_stop(); join(timeout=shutdown_timeout)              │
│   wait()          join()                                                      │
│                                                                               │
│  Deadlines are computed from the start time, so a slow tick shortens the     │
│  following sleep instead of shifting the whole cadence.                       │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import UTC, datetime
from typing import Any

from cronspine.core.errors import ConfigError, PermanentStoreError
from cronspine.core.logging import get_logger

from .protocol import BackendHealth, TickCallback

logger = get_logger(__name__)

DEFAULT_FATAL_EXCEPTIONS: tuple[type[BaseException], ...] = (
    PermanentStoreError,
    ConfigError,
)


class ThreadSchedulerBackend:
    """Threading-based scheduler backend.

    Args:
        shutdown_timeout: Seconds ``stop()`` waits for the in-flight tick
        fatal_exceptions: Exception types that stop the loop when a tick raises them

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>>
        >>> async def my_tick():
        ...     print("Tick!")
        ...
        >>> backend.start(my_tick, interval_seconds=5.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(
        self,
        *,
        shutdown_timeout: float = 30.0,
        fatal_exceptions: tuple[type[BaseException], ...] = DEFAULT_FATAL_EXCEPTIONS,
    ) -> None:
        self.shutdown_timeout = shutdown_timeout
        self.fatal_exceptions = fatal_exceptions
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 10.0
        self._started = False
        self._error: BaseException | None = None
        self._lock = threading.Lock()

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
    ) -> None:
        """Start the scheduler loop in a daemon thread.

        Args:
            tick_callback: Async function to call on each tick
            interval_seconds: Seconds between tick starts
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        if self._started:
            logger.warning("backend.already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._error = None
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("backend.started", backend=self.name, interval_seconds=interval_seconds)
            next_deadline = time.monotonic()
            while True:
                if not self._run_tick(tick_callback):
                    break
                next_deadline += interval_seconds
                now = time.monotonic()
                if next_deadline < now:
                    # Overran one or more intervals; resume cadence from now.
                    next_deadline = now
                if self._stop_event.wait(next_deadline - now):
                    break
            logger.info("backend.stopped", backend=self.name, tick_count=self._tick_count)

        self._thread = threading.Thread(target=_loop, daemon=True, name="cronspine-scheduler")
        self._started = True
        self._thread.start()

    def _run_tick(self, tick_callback: TickCallback) -> bool:
        """Run one tick; False when the loop must exit."""
        with self._lock:
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)

        try:
            asyncio.run(tick_callback())
        except self.fatal_exceptions as e:
            self._error = e
            self._stop_event.set()
            logger.error("backend.fatal_error", backend=self.name, error=str(e), error_type=type(e).__name__)
            return False
        except Exception as e:
            logger.exception("backend.tick_failed", backend=self.name, error=str(e))
        return True

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop(self) -> None:
        """Stop the scheduler loop, waiting up to ``shutdown_timeout``."""
        if not self._started:
            return

        self.request_stop()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.shutdown_timeout)
            if self._thread.is_alive():
                logger.warning(
                    "backend.stop_timeout",
                    backend=self.name,
                    shutdown_timeout=self.shutdown_timeout,
                )

        self._started = False
        logger.info("backend.shutdown_complete", backend=self.name)

    def wait(self, timeout: float | None = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def error(self) -> BaseException | None:
        return self._error

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        """Return structured health status."""
        return BackendHealth(
            healthy=self.is_running and self._error is None,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            error=str(self._error) if self._error else None,
            extra={"interval_seconds": self._interval},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
