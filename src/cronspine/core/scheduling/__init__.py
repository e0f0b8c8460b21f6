"""Scheduling package for cron-spine.

Manifesto:
    Running the same cron table on several replicas normally means picking
    one of two evils: a single leader (and downtime whenever it dies) or
    every replica firing every job.  cron-spine takes a third way: every
    replica evaluates every schedule, and an atomic claim in the shared
    store makes sure each scheduled instant is enqueued exactly once.  A
    bounded look-back window recovers instants missed during downtime.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CRON-SPINE SCHEDULER                                                         │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from cronspine.core.scheduling import (                            │   │
│  │       create_scheduler,                                              │   │
│  │       load_registry_from_yaml,                                       │   │
│  │   )                                                                  │   │
│  │   from cronspine.core.settings import get_settings                   │   │
│  │                                                                      │   │
│  │   registry = load_registry_from_yaml("schedules.yaml")               │   │
│  │   scheduler = create_scheduler(get_settings(), registry)             │   │
│  │   scheduler.run_forever()                                            │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Architecture:                                                                │
│                                                                               │
│   ┌──────────────┐  tick()  ┌─────────────────────────────────────────┐     │
│   │ Thread       │ ───────► │ SchedulerService                        │     │
│   │ backend      │          │   registry ──► walker ──► cron          │     │
│   └──────────────┘          │                  │                      │     │
│                             │                  ▼                      │     │
│                             │   dedup key ──► EnqueueTransaction      │     │
│                             └──────────────────────┬──────────────────┘     │
│                                                    ▼                        │
│                                    StoreClient (Redis / Sentinel)           │
│                                    SET NX EX + RPUSH in one Lua script      │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Running one "leader" replica and hoping it never dies
    ✅ Every replica ticks; the store claim arbitrates
    ❌ Constructing scheduler components individually
    ✅ ``create_scheduler(settings, registry)`` factory function

Tags:
    cron-spine, scheduling, cron, idempotency, redis, sentinel,
    beat-as-poller, missed-jobs

Doc-Types:
    package-overview, architecture-map, module-index
"""

from __future__ import annotations

import os
import socket

from cronspine.core.errors import MissingConfigError
from cronspine.core.settings import CronSpineSettings

# Cron
from .cron import CronExpression, evaluate, parse_cron, validate_timezone

# Dedup
from .dedup import DedupKey, build_dedup_key

# Enqueue
from .enqueue import (
    EnqueueOutcome,
    EnqueueResult,
    EnqueueTransaction,
    JobInstruction,
    build_instruction,
)

# Health
from .health import StoreHealthReport, check_store_health

# Loader
from .loader import load_registry_from_dict, load_registry_from_yaml

# Protocol
from .protocol import BackendHealth, SchedulerBackend

# Registry
from .registry import Schedule, ScheduleRegistry

# Service
from .service import (
    LoopState,
    SchedulerHealth,
    SchedulerService,
    SchedulerStats,
    ScheduleTickCounts,
    TickReport,
)

# Store
from .store import InMemoryStore, RedisStore, StoreClient, create_store

# Backends
from .thread_backend import ThreadSchedulerBackend

# Window
from .window import MissedJobWindowWalker, ScheduledInstant

__all__ = [
    # Cron
    "CronExpression",
    "parse_cron",
    "validate_timezone",
    "evaluate",
    # Registry
    "Schedule",
    "ScheduleRegistry",
    "load_registry_from_yaml",
    "load_registry_from_dict",
    # Dedup
    "DedupKey",
    "build_dedup_key",
    # Window
    "MissedJobWindowWalker",
    "ScheduledInstant",
    # Enqueue
    "EnqueueOutcome",
    "EnqueueResult",
    "EnqueueTransaction",
    "JobInstruction",
    "build_instruction",
    # Store
    "StoreClient",
    "InMemoryStore",
    "RedisStore",
    "create_store",
    # Protocol / backends
    "SchedulerBackend",
    "BackendHealth",
    "ThreadSchedulerBackend",
    # Service
    "LoopState",
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    "ScheduleTickCounts",
    "TickReport",
    # Health
    "check_store_health",
    "StoreHealthReport",
    # Factory
    "create_scheduler",
    "default_replica_id",
]


def default_replica_id() -> str:
    """``hostname:pid``; recorded as the value of every claim this replica wins."""
    return f"{socket.gethostname()}:{os.getpid()}"


def create_scheduler(
    settings: CronSpineSettings,
    registry: ScheduleRegistry | None = None,
    store: StoreClient | None = None,
) -> SchedulerService:
    """Factory function to create a fully wired scheduler service.

    Args:
        settings: Process settings (window, TTL, tick cadence, store)
        registry: Schedule snapshot; loaded from ``settings.schedules_file`` if omitted
        store: Store client; built from settings if omitted

    Returns:
        Configured SchedulerService (not started)

    Raises:
        MissingConfigError: If no registry is given and no schedule file is set

    Example:
        >>> scheduler = create_scheduler(get_settings(), registry)
        >>> scheduler.start()
    """
    if registry is None:
        if settings.schedules_file is None:
            raise MissingConfigError(
                "schedules_file",
                "No schedule file configured; set CRONSPINE_SCHEDULES_FILE or pass a registry",
            )
        registry = load_registry_from_yaml(settings.schedules_file)
    if store is None:
        store = create_store(settings)

    walker = MissedJobWindowWalker(settings.missed_jobs_window)
    transaction = EnqueueTransaction(
        store,
        claim_ttl_seconds=settings.claim_ttl_seconds,
        namespace=settings.namespace,
        claim_value=settings.replica_id or default_replica_id(),
    )
    backend = ThreadSchedulerBackend(shutdown_timeout=settings.shutdown_timeout)

    return SchedulerService(
        registry,
        store,
        backend=backend,
        walker=walker,
        transaction=transaction,
        interval_seconds=settings.tick_seconds,
        max_concurrency=settings.max_concurrency,
        namespace=settings.namespace,
    )
