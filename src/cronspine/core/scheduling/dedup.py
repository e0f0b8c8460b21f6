"""Dedup keys - one deterministic identifier per scheduled instant.

Manifesto:
    Replicas agree on what "the same job occurrence" means without ever
    talking to each other: each derives the key from the schedule name and
    the instant alone.  No randomness, no replica id, no local counters.

    The key is a direct encoding rather than a hash, so distinct
    ``(schedule, instant)`` pairs can never collide::

        {namespace}:claim:{schedule_name}:{epoch_seconds}

    The trailing segment is an integer and never contains ``:``, so the key
    parses unambiguously from the right even when the schedule name itself
    contains colons.

Tags:
    cron-spine, scheduling, idempotency, dedup, claim-key

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from cronspine.core.hashing import compute_hash

DEFAULT_NAMESPACE = "cronspine"

_CLAIM_SEGMENT = "claim"


@dataclass(frozen=True, order=True)
class DedupKey:
    """Claim identifier for one ``(schedule, instant)`` pair."""

    namespace: str
    schedule_name: str
    epoch_seconds: int

    def __str__(self) -> str:
        return f"{self.namespace}:{_CLAIM_SEGMENT}:{self.schedule_name}:{self.epoch_seconds}"

    @property
    def value(self) -> str:
        return str(self)

    @property
    def instant(self) -> datetime:
        return datetime.fromtimestamp(self.epoch_seconds, tz=UTC)

    @property
    def job_id(self) -> str:
        """128-bit hex id for the job instruction pushed under this key."""
        return compute_hash(self.value, length=32)

    @classmethod
    def parse(cls, value: str) -> DedupKey:
        """Inverse of ``str(key)``.

        Raises:
            ValueError: If ``value`` is not a claim key
        """
        head, sep, epoch = value.rpartition(":")
        if not sep or not epoch.lstrip("-").isdigit():
            raise ValueError(f"Not a claim key: {value!r}")

        namespace, sep, rest = head.partition(f":{_CLAIM_SEGMENT}:")
        if not sep or not namespace or not rest:
            raise ValueError(f"Not a claim key: {value!r}")

        return cls(namespace=namespace, schedule_name=rest, epoch_seconds=int(epoch))


def build_dedup_key(
    schedule_name: str,
    instant: datetime,
    namespace: str = DEFAULT_NAMESPACE,
) -> DedupKey:
    """Derive the claim key for ``schedule_name`` firing at ``instant``.

    Sub-second precision is dropped; the cron evaluator never produces it.

    Raises:
        ValueError: If ``instant`` is naive or the name is empty
    """
    if not schedule_name:
        raise ValueError("schedule_name must not be empty")
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError(f"instant must be timezone-aware, got naive {instant!r}")
    if ":" in namespace:
        raise ValueError(f"namespace must not contain ':', got {namespace!r}")

    epoch = int(instant.astimezone(UTC).replace(microsecond=0).timestamp())
    return DedupKey(namespace=namespace, schedule_name=schedule_name, epoch_seconds=epoch)


__all__ = ["DedupKey", "build_dedup_key", "DEFAULT_NAMESPACE"]
