"""Scheduler service - the per-replica tick loop.

Manifesto:
    Every replica runs the same loop against the same store and the same
    schedule set.  There is no leader: on every tick each replica tries to
    enqueue every due instant, and the store's atomic claim lets exactly one
    of them win.  A replica that was down, or whose store call failed, does
    nothing special afterwards; the next tick walks the window again.

Tags:
    cron-spine, scheduling, orchestrator, beat-as-poller, service

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE ARCHITECTURE                                               │
│                                                                               │
│   Dependencies:                                                               │
│   ┌──────────────┐ ┌──────────────┐ ┌──────────────┐ ┌──────────────────┐    │
│   │ Backend      │ │ Registry     │ │ Walker       │ │ Transaction      │    │
│   │ (timing)     │ │ (snapshot)   │ │ (window)     │ │ (claim-and-push) │    │
│   └──────┬───────┘ └──────┬───────┘ └──────┬───────┘ └────────┬─────────┘    │
│          ▼                ▼                ▼                  ▼              │
│   ┌──────────────────────────────────────────────────────────────────────┐   │
│   │                               tick()                                 │   │
│   │   1. IDLE -> TICKING; take the registry snapshot                     │   │
│   │   2. now = store.now()                                               │   │
│   │   3. per enabled schedule, in worker threads (<= max_concurrency):   │   │
│   │      ├── epoch = store.set_if_absent(epoch key, floor(now))          │   │
│   │      ├── due = walker.due_instants(schedule, now, not_before=epoch)  │   │
│   │      └── for each instant: build key + instruction, attempt()        │   │
│   │   4. aggregate TickReport; TICKING -> IDLE                           │   │
│   └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│   State machine:                                                              │
│       IDLE ──tick()──► TICKING ──done──► IDLE                                 │
│        └──────────── request_shutdown() ──────────► SHUTTING_DOWN            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from cronspine.core.errors import (
    OrchestrationError,
    SchedulerShutdownError,
    TransientStoreError,
    is_fatal,
)
from cronspine.core.logging import LogContext, get_logger

from .dedup import DEFAULT_NAMESPACE, build_dedup_key
from .enqueue import EnqueueOutcome, EnqueueTransaction, build_instruction
from .protocol import BackendHealth, SchedulerBackend
from .registry import Schedule, ScheduleRegistry
from .store import StoreClient, epoch_key
from .thread_backend import ThreadSchedulerBackend
from .window import MissedJobWindowWalker

logger = get_logger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    TICKING = "ticking"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class ScheduleTickCounts:
    """Outcome counts for one schedule within one tick."""

    due: int = 0
    pushed: int = 0
    already_claimed: int = 0
    transient_failure: int = 0
    error: str | None = None

    def record(self, outcome: EnqueueOutcome) -> None:
        if outcome is EnqueueOutcome.PUSHED:
            self.pushed += 1
        elif outcome is EnqueueOutcome.ALREADY_CLAIMED:
            self.already_claimed += 1
        else:
            self.transient_failure += 1

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "due": self.due,
            "pushed": self.pushed,
            "already_claimed": self.already_claimed,
            "transient_failure": self.transient_failure,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class TickReport:
    """What one tick did, per schedule."""

    tick: int
    started_at: datetime
    now: datetime | None = None
    finished_at: datetime | None = None
    schedules: dict[str, ScheduleTickCounts] = field(default_factory=dict)
    error: str | None = None

    @property
    def pushed(self) -> int:
        return sum(c.pushed for c in self.schedules.values())

    @property
    def already_claimed(self) -> int:
        return sum(c.already_claimed for c in self.schedules.values())

    @property
    def transient_failures(self) -> int:
        return sum(c.transient_failure for c in self.schedules.values())

    @property
    def duration_ms(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick": self.tick,
            "started_at": self.started_at.isoformat(),
            "now": self.now.isoformat() if self.now else None,
            "duration_ms": self.duration_ms,
            "pushed": self.pushed,
            "already_claimed": self.already_claimed,
            "transient_failures": self.transient_failures,
            "error": self.error,
            "schedules": {name: counts.to_dict() for name, counts in self.schedules.items()},
        }


@dataclass
class SchedulerStats:
    """Running totals across ticks."""

    tick_count: int = 0
    jobs_pushed: int = 0
    jobs_already_claimed: int = 0
    transient_failures: int = 0
    schedules_failed: int = 0
    last_tick: datetime | None = None
    last_tick_duration_ms: float | None = None
    last_error: str | None = None

    def add(self, report: TickReport) -> None:
        self.tick_count += 1
        self.jobs_pushed += report.pushed
        self.jobs_already_claimed += report.already_claimed
        self.transient_failures += report.transient_failures
        self.schedules_failed += sum(1 for c in report.schedules.values() if c.error)
        self.last_tick = report.started_at
        self.last_tick_duration_ms = report.duration_ms
        if report.error:
            self.last_error = report.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "jobs_pushed": self.jobs_pushed,
            "jobs_already_claimed": self.jobs_already_claimed,
            "transient_failures": self.transient_failures,
            "schedules_failed": self.schedules_failed,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_tick_duration_ms": self.last_tick_duration_ms,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the scheduler service."""

    healthy: bool
    state: LoopState
    backend: BackendHealth | dict
    schedules_enabled: int = 0
    fatal_error: str | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "state": self.state.value,
            "backend": self.backend.to_dict() if isinstance(self.backend, BackendHealth) else self.backend,
            "schedules_enabled": self.schedules_enabled,
            "fatal_error": self.fatal_error,
            "stats": self.stats.to_dict(),
        }


class SchedulerService:
    """Per-replica scheduler: walks windows and claims instants every tick.

    Args:
        registry: Initial schedule snapshot
        store: Store client shared with the other replicas
        backend: Timing backend (default: ThreadSchedulerBackend)
        walker: Missed-job window walker (default: one-hour window)
        transaction: Enqueue transaction (default: built from ``store``)
        interval_seconds: Tick cadence
        max_concurrency: Schedules processed in parallel within a tick
        namespace: Key prefix, shared by every replica

    Example:
        >>> store = InMemoryStore()
        >>> service = SchedulerService(registry, store)
        >>> report = asyncio.run(service.tick())
        >>> report.pushed
        1
    """

    def __init__(
        self,
        registry: ScheduleRegistry,
        store: StoreClient,
        backend: SchedulerBackend | None = None,
        walker: MissedJobWindowWalker | None = None,
        transaction: EnqueueTransaction | None = None,
        *,
        interval_seconds: float = 10.0,
        max_concurrency: int = 8,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

        self.store = store
        self.backend = backend or ThreadSchedulerBackend()
        self.walker = walker or MissedJobWindowWalker()
        self.namespace = namespace
        self.transaction = transaction or EnqueueTransaction(
            store,
            claim_ttl_seconds=int(self.walker.window.total_seconds()) * 2,
            namespace=namespace,
        )
        if self.transaction.claim_ttl_seconds < self.walker.window.total_seconds():
            raise ValueError("claim TTL must be >= the missed-jobs window")
        self.interval = interval_seconds
        self.max_concurrency = max_concurrency

        self._registry = registry
        self._state = LoopState.IDLE
        self._state_lock = threading.Lock()
        self._epochs: dict[str, datetime] = {}
        self._stats = SchedulerStats()
        self._tick_number = 0
        self._fatal_error: BaseException | None = None
        self._running = False

    # === Registry ===

    @property
    def registry(self) -> ScheduleRegistry:
        return self._registry

    def replace_registry(self, registry: ScheduleRegistry) -> None:
        """Swap the schedule snapshot; in-flight ticks keep the old one."""
        previous = self._registry
        self._registry = registry
        logger.info(
            "scheduler.registry_replaced",
            schedules=len(registry),
            added=sorted(set(registry.names()) - set(previous.names())),
            removed=sorted(set(previous.names()) - set(registry.names())),
        )

    # === Lifecycle ===

    @property
    def state(self) -> LoopState:
        return self._state

    def start(self) -> None:
        """Start the backend tick loop."""
        if self._running:
            logger.warning("scheduler.already_running")
            return
        if self._state is LoopState.SHUTTING_DOWN:
            raise SchedulerShutdownError("Cannot start a scheduler that is shutting down")

        logger.info(
            "scheduler.starting",
            backend=self.backend.name,
            interval_seconds=self.interval,
            schedules=len(self._registry),
        )
        self.backend.start(self._on_tick, self.interval)
        self._running = True

    def request_shutdown(self) -> None:
        """Move to SHUTTING_DOWN and ask the backend to exit. Never blocks."""
        with self._state_lock:
            if self._state is not LoopState.SHUTTING_DOWN:
                logger.info("scheduler.shutdown_requested", state=self._state.value)
            self._state = LoopState.SHUTTING_DOWN
        self.backend.request_stop()

    def stop(self) -> None:
        """Shut down gracefully, letting the in-flight tick finish."""
        self.request_shutdown()
        if not self._running:
            return
        self.backend.stop()
        self._running = False
        logger.info("scheduler.stopped", **self._stats.to_dict())

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the loop exits.

        Raises:
            The fatal error that stopped the loop, if any
        """
        finished = self.backend.wait(timeout)
        error = self._fatal_error or self.backend.error
        if error is not None:
            raise error
        return finished

    def run_forever(self) -> None:
        """Start and block until shutdown or a fatal error."""
        self.start()
        try:
            self.wait()
        finally:
            self.stop()

    @property
    def is_running(self) -> bool:
        return self._running and self.backend.health().get("healthy", False)

    # === Tick Processing ===

    async def _on_tick(self) -> None:
        try:
            await self.tick()
        except SchedulerShutdownError:
            logger.debug("scheduler.tick_skipped_shutdown")

    async def tick(self) -> TickReport:
        """Run one tick over every enabled schedule.

        Raises:
            SchedulerShutdownError: If shutdown was requested
            PermanentStoreError: If the store is misconfigured (fatal)
        """
        with self._state_lock:
            if self._state is LoopState.SHUTTING_DOWN:
                raise SchedulerShutdownError("Scheduler is shutting down")
            if self._state is LoopState.TICKING:
                raise OrchestrationError("A tick is already in progress")
            self._state = LoopState.TICKING
            self._tick_number += 1
            tick_number = self._tick_number

        registry = self._registry
        report = TickReport(tick=tick_number, started_at=datetime.now(UTC))
        try:
            async with LogContext(tick=tick_number):
                await self._run_tick(registry, report)
        except BaseException as e:
            if isinstance(e, Exception) and is_fatal(e):
                self._fatal_error = e
                report.error = str(e)
                logger.error("tick.fatal", tick=tick_number, error=str(e), error_type=type(e).__name__)
            raise
        finally:
            report.finished_at = datetime.now(UTC)
            self._stats.add(report)
            with self._state_lock:
                if self._state is LoopState.TICKING:
                    self._state = LoopState.IDLE

        logger.info(
            "tick.completed",
            tick=tick_number,
            schedules={name: counts.to_dict() for name, counts in report.schedules.items()},
            pushed=report.pushed,
            already_claimed=report.already_claimed,
            transient_failures=report.transient_failures,
            duration_ms=report.duration_ms,
        )
        return report

    async def _run_tick(self, registry: ScheduleRegistry, report: TickReport) -> None:
        try:
            now = await asyncio.to_thread(self.store.now)
        except TransientStoreError as e:
            report.error = f"store clock unavailable: {e}"
            logger.warning("tick.store_unavailable", error=str(e))
            return
        report.now = now

        schedules = registry.enabled()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(schedule: Schedule) -> ScheduleTickCounts:
            async with semaphore:
                return await asyncio.to_thread(self._process_schedule, schedule, now, report.tick)

        results = await asyncio.gather(*(_bounded(s) for s in schedules), return_exceptions=True)

        fatal: BaseException | None = None
        for schedule, result in zip(schedules, results, strict=True):
            if isinstance(result, ScheduleTickCounts):
                report.schedules[schedule.name] = result
                continue
            if isinstance(result, Exception) and is_fatal(result):
                fatal = fatal or result
                report.schedules[schedule.name] = ScheduleTickCounts(error=str(result))
                continue
            if not isinstance(result, Exception):
                raise result
            report.schedules[schedule.name] = ScheduleTickCounts(error=str(result))
            logger.error(
                "schedule.failed",
                schedule=schedule.name,
                error=str(result),
                error_type=type(result).__name__,
                exc_info=result,
            )

        if fatal is not None:
            raise fatal

    def _schedule_epoch(self, schedule: Schedule, now: datetime) -> datetime:
        """First instant any replica saw ``schedule``; recorded once in the store."""
        cached = self._epochs.get(schedule.name)
        if cached is not None:
            return cached

        floor = schedule.expression.floor(now)
        stored = self.store.set_if_absent(
            epoch_key(self.namespace, schedule.name),
            str(int(floor.timestamp())),
        )
        epoch = datetime.fromtimestamp(int(stored), tz=UTC)
        self._epochs[schedule.name] = epoch
        if epoch == floor:
            logger.info("schedule.first_seen", schedule=schedule.name, epoch=epoch.isoformat())
        return epoch

    def _process_schedule(self, schedule: Schedule, now: datetime, tick: int) -> ScheduleTickCounts:
        counts = ScheduleTickCounts()
        with LogContext(schedule=schedule.name, tick=tick):
            try:
                epoch = self._schedule_epoch(schedule, now)
            except TransientStoreError as e:
                counts.transient_failure += 1
                counts.error = str(e)
                logger.warning("schedule.epoch_unavailable", error=str(e))
                return counts

            due = self.walker.due_instants(schedule, now, not_before=epoch)
            counts.due = len(due)
            for instant in due:
                key = build_dedup_key(schedule.name, instant.at, self.namespace)
                instruction = build_instruction(schedule, instant.at, key, enqueued_at=now)
                result = self.transaction.attempt(key, instruction)
                counts.record(result.outcome)
        return counts

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        fatal = self._fatal_error or self.backend.error
        return SchedulerHealth(
            healthy=self._running and backend_health.get("healthy", False) and fatal is None,
            state=self._state,
            backend=backend_health,
            schedules_enabled=len(self._registry.enabled()),
            fatal_error=str(fatal) if fatal else None,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


__all__ = [
    "LoopState",
    "ScheduleTickCounts",
    "TickReport",
    "SchedulerStats",
    "SchedulerHealth",
    "SchedulerService",
]
