"""Tests for SchedulerService tick behavior."""

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from cronspine.core.errors import (
    OrchestrationError,
    PermanentStoreError,
    SchedulerShutdownError,
    TransientStoreError,
)
from cronspine.core.scheduling.enqueue import EnqueueTransaction
from cronspine.core.scheduling.registry import ScheduleRegistry
from cronspine.core.scheduling.service import LoopState, SchedulerService
from cronspine.core.scheduling.store import InMemoryStore
from cronspine.core.scheduling.window import MissedJobWindowWalker


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class FlakyStore(InMemoryStore):
    """InMemoryStore whose claim_and_push fails while ``failing`` is set."""

    def __init__(self, error: Exception | None = None, **kwargs):
        super().__init__(**kwargs)
        self.error = error or TransientStoreError("failover in progress")
        self.failing = True

    def claim_and_push(self, *args, **kwargs):
        if self.failing:
            raise self.error
        return super().claim_and_push(*args, **kwargs)


def make_service(store, schedules, window=timedelta(hours=1), **kwargs) -> SchedulerService:
    return SchedulerService(
        ScheduleRegistry(schedules),
        store,
        backend=MagicMock(),
        walker=MissedJobWindowWalker(window),
        **kwargs,
    )


def queued(store, queue="default"):
    return [json.loads(p) for p in store.peek_queue(queue, 1000)]


class TestFirstTick:
    @pytest.mark.asyncio
    async def test_every_five_minutes_enqueues_only_current_instant(self, store, make_schedule):
        """Fresh deployment at 10:00:07 with a 60-minute window: only 10:00 is enqueued."""
        service = make_service(store, [make_schedule("five", "*/5 * * * *")])

        report = await service.tick()

        assert report.schedules["five"].pushed == 1
        assert report.schedules["five"].due == 1
        assert [job["scheduled_at"] for job in queued(store)] == ["2026-01-05T10:00:00+00:00"]

    @pytest.mark.asyncio
    async def test_first_tick_between_instants_enqueues_nothing(self, store, clock, make_schedule):
        clock.set(utc(2026, 1, 5, 10, 3, 0))
        service = make_service(store, [make_schedule("five", "*/5 * * * *")])

        report = await service.tick()
        assert report.pushed == 0

        clock.set(utc(2026, 1, 5, 10, 5, 2))
        report = await service.tick()
        assert report.pushed == 1

    @pytest.mark.asyncio
    async def test_repeat_tick_is_idempotent(self, store, clock, make_schedule):
        service = make_service(store, [make_schedule()])

        await service.tick()
        clock.advance(seconds=5)
        report = await service.tick()

        assert report.pushed == 0
        assert report.already_claimed == 1
        assert store.queue_length("default") == 1


class TestDowntimeRecovery:
    @pytest.mark.asyncio
    async def test_five_minute_outage_recovered_exactly_once(self, store, clock, make_schedule):
        schedule = make_schedule()
        await make_service(store, [schedule]).tick()  # 10:00

        # Replica dies; a new process starts five and a half minutes later.
        clock.advance(minutes=5, seconds=30)
        restarted = make_service(store, [schedule])
        report = await restarted.tick()

        assert report.pushed == 5
        assert report.already_claimed == 1
        scheduled = [job["scheduled_at"] for job in queued(store)]
        assert scheduled == [f"2026-01-05T10:0{m}:00+00:00" for m in range(6)]
        assert len(set(job["jid"] for job in queued(store))) == 6

    @pytest.mark.asyncio
    async def test_outage_longer_than_window_loses_old_instants(self, store, clock, make_schedule):
        schedule = make_schedule()
        await make_service(store, [schedule], window=timedelta(minutes=10)).tick()

        clock.advance(minutes=30)
        report = await make_service(store, [schedule], window=timedelta(minutes=10)).tick()

        assert report.pushed == 10  # window [10:20:07, 10:30:07] holds 10:21 .. 10:30
        assert queued(store)[1]["scheduled_at"] == "2026-01-05T10:21:00+00:00"

    @pytest.mark.asyncio
    async def test_transient_failure_retried_next_tick(self, clock, make_schedule):
        store = FlakyStore(clock=clock)
        service = make_service(store, [make_schedule()])

        report = await service.tick()
        assert report.transient_failures == 1
        assert store.queue_length("default") == 0

        store.failing = False
        clock.advance(minutes=1)
        report = await service.tick()
        assert report.pushed == 2
        assert store.queue_length("default") == 2


class TestReplicas:
    @pytest.mark.asyncio
    async def test_two_replicas_same_minute_one_job(self, store, make_schedule):
        schedule = make_schedule("five", "*/5 * * * *")
        first = make_service(store, [schedule], transaction=EnqueueTransaction(store, claim_ttl_seconds=7200, claim_value="a"))
        second = make_service(store, [schedule], transaction=EnqueueTransaction(store, claim_ttl_seconds=7200, claim_value="b"))

        reports = await asyncio.gather(first.tick(), second.tick())

        assert sum(r.pushed for r in reports) == 1
        assert sum(r.already_claimed for r in reports) == 1
        assert store.queue_length("default") == 1

    @pytest.mark.asyncio
    async def test_many_schedules_processed_concurrently(self, store, make_schedule):
        schedules = [make_schedule(f"s{i}", "* * * * *", queue=f"q{i % 3}") for i in range(20)]
        service = make_service(store, schedules, max_concurrency=4)

        report = await service.tick()

        assert report.pushed == 20
        assert sorted(report.schedules) == sorted(s.name for s in schedules)
        assert sum(store.queue_length(f"q{i}") for i in range(3)) == 20

    @pytest.mark.asyncio
    async def test_disabled_schedules_skipped(self, store, make_schedule):
        service = make_service(store, [make_schedule("on"), make_schedule("off", enabled=False)])
        report = await service.tick()
        assert list(report.schedules) == ["on"]


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_permanent_store_error_propagates(self, clock, make_schedule):
        store = FlakyStore(PermanentStoreError("NOAUTH Authentication required"), clock=clock)
        service = make_service(store, [make_schedule("a"), make_schedule("b")])

        with pytest.raises(PermanentStoreError):
            await service.tick()

        assert service.state is LoopState.IDLE
        assert "NOAUTH" in service.health().fatal_error
        assert service.get_stats().tick_count == 1

    @pytest.mark.asyncio
    async def test_store_clock_unavailable(self, make_schedule):
        store = MagicMock()
        store.now.side_effect = TransientStoreError("timeout")
        service = make_service(store, [make_schedule()])

        report = await service.tick()
        assert report.pushed == 0
        assert "store clock unavailable" in report.error
        store.claim_and_push.assert_not_called()

    def test_wait_reraises_fatal(self, store, make_schedule):
        service = make_service(store, [make_schedule()])
        service._fatal_error = PermanentStoreError("bad credentials")
        service.backend.wait.return_value = True
        service.backend.error = None

        with pytest.raises(PermanentStoreError):
            service.wait()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_no_tick_after_shutdown(self, store, make_schedule):
        service = make_service(store, [make_schedule()])
        service.request_shutdown()

        assert service.state is LoopState.SHUTTING_DOWN
        service.backend.request_stop.assert_called_once()
        with pytest.raises(SchedulerShutdownError):
            await service.tick()

    @pytest.mark.asyncio
    async def test_overlapping_tick_rejected(self, store, make_schedule):
        service = make_service(store, [make_schedule()])
        service._state = LoopState.TICKING
        with pytest.raises(OrchestrationError):
            await service.tick()

    def test_start_and_stop_delegate_to_backend(self, store, make_schedule):
        service = make_service(store, [make_schedule()], interval_seconds=2.5)
        service.start()
        service.backend.start.assert_called_once_with(service._on_tick, 2.5)

        service.stop()
        service.backend.stop.assert_called_once()
        assert service.state is LoopState.SHUTTING_DOWN

    @pytest.mark.asyncio
    async def test_replace_registry_swaps_snapshot(self, store, make_schedule):
        service = make_service(store, [make_schedule("old")])
        await service.tick()

        service.replace_registry(ScheduleRegistry([make_schedule("new", queue="other")]))
        report = await service.tick()

        assert list(report.schedules) == ["new"]
        assert store.queue_length("other") == 1

    def test_claim_ttl_shorter_than_window_rejected(self, store, make_schedule):
        with pytest.raises(ValueError):
            make_service(
                store,
                [make_schedule()],
                transaction=EnqueueTransaction(store, claim_ttl_seconds=60),
            )


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_accumulate(self, store, clock, make_schedule):
        service = make_service(store, [make_schedule()])
        await service.tick()
        clock.advance(minutes=1)
        await service.tick()

        stats = service.get_stats()
        assert stats.tick_count == 2
        assert stats.jobs_pushed == 2
        assert stats.jobs_already_claimed == 1
        assert stats.to_dict()["last_tick"] is not None

        service.reset_stats()
        assert service.get_stats().tick_count == 0

    @pytest.mark.asyncio
    async def test_report_to_dict(self, store, make_schedule):
        report = await make_service(store, [make_schedule("a")]).tick()
        data = report.to_dict()
        assert data["schedules"]["a"] == {"due": 1, "pushed": 1, "already_claimed": 0, "transient_failure": 0}
        assert data["now"] == "2026-01-05T10:00:07+00:00"
