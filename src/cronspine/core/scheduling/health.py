"""Store health checks and clock drift detection.

Every replica takes "now" from the store clock, so a replica's own clock
being off does not change what gets enqueued.  It does still matter for
humans reading logs, and a large drift usually points at a broken NTP
setup on the host, so the health check reports it.

┌──────────────────────────────────────────────────────────────────────────────┐
│  STORE HEALTH                                                                 │
│                                                                               │
│   Replica                       Store (Redis)                                 │
│      │   PING                       │                                         │
│      ├─────────────────────────────►│                                         │
│      │   TIME                       │                                         │
│      ├─────────────────────────────►│  2026-03-08T14:00:00.120Z               │
│      │                              │                                         │
│   Local: 2026-03-08T14:00:01.500Z (midpoint of the round trip)               │
│   Drift: 1380ms  WARNING (> 1000ms threshold)                                │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cronspine.core.errors import CronSpineError
from cronspine.core.logging import get_logger

from .store import StoreClient

logger = get_logger(__name__)


@dataclass
class StoreHealthReport:
    """Result of :func:`check_store_health`."""

    healthy: bool
    backend: str
    checks: dict[str, bool] = field(default_factory=dict)
    store_time: datetime | None = None
    local_time: datetime | None = None
    drift_ms: float | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "checks": self.checks,
            "store_time": self.store_time.isoformat() if self.store_time else None,
            "local_time": self.local_time.isoformat() if self.local_time else None,
            "drift_ms": self.drift_ms,
            "warnings": self.warnings,
            "errors": self.errors,
        }


def check_store_health(
    store: StoreClient,
    drift_threshold_ms: float = 1000.0,
) -> StoreHealthReport:
    """Ping the store and compare its clock with the local one.

    Args:
        store: Store client to check
        drift_threshold_ms: Clock drift warning threshold

    Returns:
        StoreHealthReport; ``healthy`` is False only when the store is unreachable
    """
    report = StoreHealthReport(
        healthy=True,
        backend=getattr(store, "endpoint", None) or getattr(store, "name", type(store).__name__),
    )

    # === Reachability ===
    try:
        report.checks["ping"] = store.ping()
    except CronSpineError as e:
        report.checks["ping"] = False
        report.errors.append(f"Store ping failed: {e.message}")

    if not report.checks["ping"]:
        report.healthy = False
        return report

    # === Clock drift ===
    try:
        before = datetime.now(UTC)
        store_time = store.now()
        after = datetime.now(UTC)
    except CronSpineError as e:
        report.checks["clock"] = False
        report.healthy = False
        report.errors.append(f"Store clock unavailable: {e.message}")
        return report

    local_time = before + (after - before) / 2
    drift_ms = abs((local_time - store_time).total_seconds() * 1000)
    report.store_time = store_time
    report.local_time = local_time
    report.drift_ms = drift_ms

    drift_ok = drift_ms < drift_threshold_ms
    report.checks["clock"] = True
    report.checks["drift_ok"] = drift_ok
    if not drift_ok:
        report.warnings.append(f"Clock drift: {drift_ms:.0f}ms (threshold: {drift_threshold_ms:.0f}ms)")
        logger.warning("health.clock_drift", drift_ms=drift_ms, threshold_ms=drift_threshold_ms)

    return report


__all__ = ["StoreHealthReport", "check_store_health"]
