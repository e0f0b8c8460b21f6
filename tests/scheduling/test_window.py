"""Tests for the missed-job window walker."""

from datetime import UTC, datetime, timedelta

import pytest

from cronspine.core.errors import InvalidConfigError
from cronspine.core.scheduling.window import MissedJobWindowWalker, ScheduledInstant


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestWindowBoundaries:
    def test_instant_exactly_window_old_is_included(self, make_schedule):
        walker = MissedJobWindowWalker(timedelta(hours=1))
        schedule = make_schedule("nine", "0 9 * * *")

        due = walker.due_instants(schedule, utc(2026, 1, 5, 10, 0, 0))
        assert due == [ScheduledInstant("nine", utc(2026, 1, 5, 9, 0))]

    def test_instant_one_second_older_is_excluded(self, make_schedule):
        walker = MissedJobWindowWalker(timedelta(hours=1))
        schedule = make_schedule("nine", "0 9 * * *")

        assert walker.due_instants(schedule, utc(2026, 1, 5, 10, 0, 1)) == []

    def test_instant_at_now_is_included(self, make_schedule):
        walker = MissedJobWindowWalker(timedelta(minutes=5))
        schedule = make_schedule("ten", "0 10 * * *")

        due = walker.due_instants(schedule, utc(2026, 1, 5, 10, 0, 0))
        assert [d.at for d in due] == [utc(2026, 1, 5, 10, 0)]

    def test_full_window_ascending(self, make_schedule):
        walker = MissedJobWindowWalker(timedelta(hours=1))
        due = walker.due_instants(make_schedule(), utc(2026, 1, 5, 10, 0, 30))

        assert len(due) == 60
        assert due[0].at == utc(2026, 1, 5, 9, 1)
        assert due[-1].at == utc(2026, 1, 5, 10, 0)
        assert due == sorted(due)


class TestNotBefore:
    def test_epoch_raises_lower_bound(self, make_schedule):
        walker = MissedJobWindowWalker(timedelta(hours=1))
        schedule = make_schedule("five", "*/5 * * * *")

        due = walker.due_instants(
            schedule, utc(2026, 1, 5, 10, 0, 7), not_before=utc(2026, 1, 5, 10, 0)
        )
        assert [d.at for d in due] == [utc(2026, 1, 5, 10, 0)]

    def test_epoch_older_than_window_is_ignored(self, make_schedule):
        walker = MissedJobWindowWalker(timedelta(minutes=10))
        schedule = make_schedule("five", "*/5 * * * *")

        due = walker.due_instants(
            schedule, utc(2026, 1, 5, 10, 0, 7), not_before=utc(2025, 1, 1)
        )
        assert [d.at for d in due] == [utc(2026, 1, 5, 9, 55), utc(2026, 1, 5, 10, 0)]

    def test_epoch_in_future_yields_nothing(self, make_schedule):
        walker = MissedJobWindowWalker()
        due = walker.due_instants(
            make_schedule(), utc(2026, 1, 5, 10, 0), not_before=utc(2026, 1, 5, 11, 0)
        )
        assert due == []


class TestValidation:
    @pytest.mark.parametrize("window", [timedelta(0), timedelta(seconds=-1)])
    def test_window_must_be_positive(self, window):
        with pytest.raises(InvalidConfigError):
            MissedJobWindowWalker(window)

    def test_naive_now_rejected(self, make_schedule):
        with pytest.raises(ValueError):
            MissedJobWindowWalker().due_instants(make_schedule(), datetime(2026, 1, 5, 10, 0))
