"""Enqueue transaction - claim an instant and push its job, atomically.

Manifesto:
    Every replica calls :meth:`EnqueueTransaction.attempt` for every due
    instant it sees.  Exactly one of them wins; the rest are told so.  There
    is no leader and no lock to hold: the store's conditional write *is* the
    arbitration.

    Outcomes are exactly three:

    ============== ======================================================
    PUSHED          This call created the claim and pushed the job
    ALREADY_CLAIMED Someone (maybe this replica, last tick) got there first
    TRANSIENT_FAILURE Store unreachable; instant stays unclaimed, retried
                    next tick while it is still inside the window
    ============== ======================================================

    A ``PermanentStoreError`` is not an outcome: it propagates and stops
    the process.

Tags:
    cron-spine, scheduling, enqueue, idempotency, exactly-once-enqueue

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from cronspine.core.errors import TransientStoreError
from cronspine.core.logging import get_logger
from cronspine.core.scheduling.dedup import DEFAULT_NAMESPACE, DedupKey
from cronspine.core.scheduling.registry import Schedule
from cronspine.core.scheduling.store import StoreClient

logger = get_logger(__name__)


class EnqueueOutcome(str, Enum):
    """Result of one claim-and-push attempt."""

    PUSHED = "pushed"
    ALREADY_CLAIMED = "already_claimed"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class EnqueueResult:
    key: DedupKey
    outcome: EnqueueOutcome
    error: TransientStoreError | None = None

    @property
    def pushed(self) -> bool:
        return self.outcome is EnqueueOutcome.PUSHED


@dataclass(frozen=True)
class JobInstruction:
    """The envelope pushed onto a queue for a worker to execute.

    ``jid`` is derived from the dedup key, so every replica building the
    instruction for the same instant builds the same ``jid``.
    """

    job_class: str
    queue: str
    jid: str
    schedule: str
    scheduled_at: datetime
    enqueued_at: datetime
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "class": self.job_class,
            "args": list(self.args),
            "kwargs": dict(self.kwargs),
            "queue": self.queue,
            "jid": self.jid,
            "schedule": self.schedule,
            "scheduled_at": self.scheduled_at.isoformat(),
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True, default=str)


def build_instruction(
    schedule: Schedule,
    instant: datetime,
    key: DedupKey,
    enqueued_at: datetime | None = None,
) -> JobInstruction:
    """Assemble the job envelope for ``schedule`` firing at ``instant``."""
    template = schedule.payload_template()
    return JobInstruction(
        job_class=template["class"],
        queue=template["queue"],
        jid=key.job_id,
        schedule=schedule.name,
        scheduled_at=instant.astimezone(UTC),
        enqueued_at=(enqueued_at or datetime.now(UTC)).astimezone(UTC),
        args=tuple(template["args"]),
        kwargs=template["kwargs"],
    )


class EnqueueTransaction:
    """Claim-and-push through a store client.

    Args:
        store: Store client shared by all replicas
        claim_ttl_seconds: Claim retention; must be >= the missed-jobs window
        namespace: Key prefix; must match the one used to build keys
        claim_value: Recorded as the claim's value (usually the replica id)
    """

    def __init__(
        self,
        store: StoreClient,
        *,
        claim_ttl_seconds: int,
        namespace: str = DEFAULT_NAMESPACE,
        claim_value: str = "1",
    ) -> None:
        if claim_ttl_seconds <= 0:
            raise ValueError(f"claim_ttl_seconds must be positive, got {claim_ttl_seconds}")
        self.store = store
        self.claim_ttl_seconds = claim_ttl_seconds
        self.namespace = namespace
        self.claim_value = claim_value

    def attempt(self, key: DedupKey, instruction: JobInstruction) -> EnqueueResult:
        """Try once to claim ``key`` and push ``instruction``.

        Raises:
            PermanentStoreError: Store misconfigured; fatal
        """
        if key.namespace != self.namespace:
            raise ValueError(f"Key namespace {key.namespace!r} != transaction namespace {self.namespace!r}")

        try:
            pushed = self.store.claim_and_push(
                key.value,
                instruction.queue,
                instruction.to_json(),
                ttl_seconds=self.claim_ttl_seconds,
                claim_value=self.claim_value,
            )
        except TransientStoreError as e:
            e.with_context(dedup_key=key.value, schedule=key.schedule_name, queue=instruction.queue)
            logger.warning(
                "enqueue.transient_failure",
                schedule=key.schedule_name,
                dedup_key=key.value,
                error=str(e),
            )
            return EnqueueResult(key, EnqueueOutcome.TRANSIENT_FAILURE, e)

        if pushed:
            logger.info(
                "enqueue.pushed",
                schedule=key.schedule_name,
                queue=instruction.queue,
                jid=instruction.jid,
                scheduled_at=instruction.scheduled_at.isoformat(),
            )
            return EnqueueResult(key, EnqueueOutcome.PUSHED)

        logger.debug("enqueue.already_claimed", schedule=key.schedule_name, dedup_key=key.value)
        return EnqueueResult(key, EnqueueOutcome.ALREADY_CLAIMED)


__all__ = [
    "EnqueueOutcome",
    "EnqueueResult",
    "JobInstruction",
    "build_instruction",
    "EnqueueTransaction",
]
