"""Tests for the cron evaluator."""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from cronspine.core.errors import InvalidCronError, UnknownTimezoneError
from cronspine.core.scheduling.cron import evaluate, parse_cron, validate_timezone

NEW_YORK = ZoneInfo("America/New_York")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestParseCron:
    @pytest.mark.parametrize(
        "expression",
        ["* * * * *", "*/5 * * * *", "0 9 * * 1-5", "0 0 1 1 *", "@hourly", "@daily"],
    )
    def test_valid_expressions(self, expression):
        parsed = parse_cron(expression)
        assert parsed.has_seconds is False
        assert parsed.granularity == timedelta(minutes=1)

    def test_six_fields_means_seconds(self):
        parsed = parse_cron("* * * * * */15")
        assert parsed.has_seconds is True
        assert parsed.granularity == timedelta(seconds=1)

    def test_whitespace_normalized(self):
        assert parse_cron("  0   9 * *  * ").expression == "0 9 * * *"

    @pytest.mark.parametrize(
        "expression",
        ["", "   ", "* * * *", "* * * * * * *", "61 * * * *", "not a cron", "0 25 * * *"],
    )
    def test_invalid_expressions(self, expression):
        with pytest.raises(InvalidCronError):
            parse_cron(expression)


class TestValidateTimezone:
    def test_known_zone(self):
        assert validate_timezone("Europe/London") == ZoneInfo("Europe/London")

    @pytest.mark.parametrize("name", ["Mars/Olympus_Mons", "", "../etc/passwd"])
    def test_unknown_zone(self, name):
        with pytest.raises(UnknownTimezoneError):
            validate_timezone(name)


class TestInstantsBetween:
    def test_half_open_interval(self):
        instants = evaluate("*/5 * * * *", "UTC", utc(2026, 1, 5, 10, 0), utc(2026, 1, 5, 10, 15))
        assert instants == [utc(2026, 1, 5, 10, 0), utc(2026, 1, 5, 10, 5), utc(2026, 1, 5, 10, 10)]

    def test_output_ascending_and_inside_interval(self):
        start = utc(2026, 2, 27, 22, 13, 41)
        end = start + timedelta(days=3)
        for expression in ("*/7 * * * *", "0 */3 * * *", "15 9 * * 1-5", "0 0 1 * *"):
            instants = evaluate(expression, "Asia/Kolkata", start, end)
            assert instants == sorted(set(instants))
            assert all(start <= at < end for at in instants)
            assert all(at.tzinfo is UTC for at in instants)

    def test_empty_when_end_not_after_start(self):
        moment = utc(2026, 1, 5, 10, 0)
        assert evaluate("* * * * *", "UTC", moment, moment) == []
        assert evaluate("* * * * *", "UTC", moment, moment - timedelta(minutes=5)) == []

    def test_seconds_field(self):
        instants = evaluate("* * * * * */20", "UTC", utc(2026, 1, 5, 10, 0, 0), utc(2026, 1, 5, 10, 1, 0))
        assert instants == [utc(2026, 1, 5, 10, 0, 0), utc(2026, 1, 5, 10, 0, 20), utc(2026, 1, 5, 10, 0, 40)]

    def test_wall_clock_fields_use_schedule_timezone(self):
        instants = evaluate("0 9 * * *", "Asia/Tokyo", utc(2026, 1, 5), utc(2026, 1, 6))
        assert instants == [utc(2026, 1, 5, 0, 0)]

    def test_naive_bounds_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            parse_cron("* * * * *").instants_between(UTC, datetime(2026, 1, 5), utc(2026, 1, 6))



class TestDaylightSaving:
    """America/New_York: 2026-03-08 02:00 -> 03:00, 2026-11-01 02:00 -> 01:00."""

    def test_spring_forward_daily_nine_am_has_no_gap_or_duplicate(self):
        instants = evaluate("0 9 * * *", "America/New_York", utc(2026, 3, 7), utc(2026, 3, 10))
        assert instants == [
            utc(2026, 3, 7, 14, 0),  # 09:00 EST
            utc(2026, 3, 8, 13, 0),  # 09:00 EDT, the transition day
            utc(2026, 3, 9, 13, 0),
        ]
        assert [at.astimezone(NEW_YORK).hour for at in instants] == [9, 9, 9]

    def test_spring_forward_skipped_wall_time_is_omitted(self):
        instants = evaluate("30 2 * * *", "America/New_York", utc(2026, 3, 7), utc(2026, 3, 10))
        assert instants == [utc(2026, 3, 7, 7, 30), utc(2026, 3, 9, 6, 30)]

    def test_spring_forward_hourly(self):
        instants = evaluate("0 * * * *", "America/New_York", utc(2026, 3, 8, 5), utc(2026, 3, 8, 9))
        # 00:00 EST, 01:00 EST, (02:00 does not exist), 03:00 EDT, 04:00 EDT
        assert instants == [utc(2026, 3, 8, 5), utc(2026, 3, 8, 6), utc(2026, 3, 8, 7), utc(2026, 3, 8, 8)]
        assert [at.astimezone(NEW_YORK).hour for at in instants] == [0, 1, 3, 4]

    def test_fall_back_ambiguous_time_resolves_to_first_occurrence(self):
        instants = evaluate("30 1 * * *", "America/New_York", utc(2026, 11, 1), utc(2026, 11, 3))
        assert instants == [utc(2026, 11, 1, 5, 30), utc(2026, 11, 2, 6, 30)]

    def test_fall_back_hourly_fires_repeated_hour_once(self):
        instants = evaluate("0 * * * *", "America/New_York", utc(2026, 11, 1, 4), utc(2026, 11, 1, 8))
        # 00:00 EDT, 01:00 EDT, (01:00 EST repeat skipped), 02:00 EST
        assert instants == [utc(2026, 11, 1, 4), utc(2026, 11, 1, 5), utc(2026, 11, 1, 7)]

    def test_start_inside_repeated_hour(self):
        instants = evaluate("*/30 * * * *", "America/New_York", utc(2026, 11, 1, 6, 10), utc(2026, 11, 1, 7, 10))
        assert instants == [utc(2026, 11, 1, 7, 0)]


class TestNextInstants:
    def test_strictly_after(self):
        expression = parse_cron("*/5 * * * *")
        assert expression.next_instants(UTC, utc(2026, 1, 5, 10, 0), count=2) == [
            utc(2026, 1, 5, 10, 5),
            utc(2026, 1, 5, 10, 10),
        ]

    def test_floor(self):
        assert parse_cron("* * * * *").floor(utc(2026, 1, 5, 10, 0, 7, 123)) == utc(2026, 1, 5, 10, 0)
        assert parse_cron("* * * * * *").floor(utc(2026, 1, 5, 10, 0, 7, 123)) == utc(2026, 1, 5, 10, 0, 7)
