"""
Shared pytest fixtures for cron-spine tests.

This module provides:
- A manual clock so tick scenarios are deterministic
- In-memory store and schedule factories
- Settings cache reset for test isolation
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from cronspine.core.scheduling.registry import Schedule, ScheduleRegistry
from cronspine.core.scheduling.store import InMemoryStore
from cronspine.core.settings import reset_settings


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value

    def advance(self, **kwargs: Any) -> datetime:
        with self._lock:
            self._now += timedelta(**kwargs)
            return self._now


@pytest.fixture(autouse=True)
def _reset_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def start_time() -> datetime:
    """Monday 2026-01-05 10:00:07 UTC: seven seconds past a minute boundary."""
    return datetime(2026, 1, 5, 10, 0, 7, tzinfo=UTC)


@pytest.fixture
def clock(start_time) -> ManualClock:
    return ManualClock(start_time)


@pytest.fixture
def store(clock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def make_schedule():
    """Factory for schedules with sensible defaults."""

    def _make(name: str = "every-minute", cron: str = "* * * * *", **kwargs: Any) -> Schedule:
        kwargs.setdefault("job_class", "ExampleJob")
        return Schedule(name=name, cron=cron, **kwargs)

    return _make


@pytest.fixture
def registry(make_schedule) -> ScheduleRegistry:
    return ScheduleRegistry(
        [
            make_schedule("every-minute", "* * * * *", queue="fast"),
            make_schedule("every-five", "*/5 * * * *", queue="default"),
        ]
    )
