"""Tests for timezone-aware reset anchors."""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from packages.quota.anchors import format_duration, most_recent_anchor, next_anchor

PARIS = ZoneInfo("Europe/Paris")
NEW_YORK = ZoneInfo("America/New_York")


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestDailyAnchor:
    """Tests for the daily reset anchor."""

    def test_after_anchor_today(self) -> None:
        # 13:00 in Paris, anchor is 10:00 local = 09:00 UTC
        assert most_recent_anchor(utc(2025, 1, 15, 12), 10, PARIS) == utc(2025, 1, 15, 9)

    def test_before_anchor_uses_yesterday(self) -> None:
        # 09:00 in Paris, before the 10:00 anchor
        assert most_recent_anchor(utc(2025, 1, 15, 8), 10, PARIS) == utc(2025, 1, 14, 9)

    def test_exactly_at_anchor(self) -> None:
        assert most_recent_anchor(utc(2025, 1, 15, 9), 10, PARIS) == utc(2025, 1, 15, 9)

    def test_result_is_utc(self) -> None:
        anchor = most_recent_anchor(utc(2025, 1, 15, 12), 10, PARIS)
        assert anchor.utcoffset() == timedelta(0)

    def test_summer_time_shifts_utc_instant(self) -> None:
        # CEST is UTC+2, so 10:00 local is 08:00 UTC
        assert most_recent_anchor(utc(2025, 7, 1, 12), 10, PARIS) == utc(2025, 7, 1, 8)

    def test_dst_spring_forward_day_is_short(self) -> None:
        """Paris moves to summer time on 2025-03-30; that day lasts 23 hours."""
        before = most_recent_anchor(utc(2025, 3, 29, 12), 10, PARIS)
        after = next_anchor(utc(2025, 3, 29, 12), 10, PARIS)
        assert before == utc(2025, 3, 29, 9)
        assert after == utc(2025, 3, 30, 8)
        assert after - before == timedelta(hours=23)

    def test_dst_fall_back_day_is_long(self) -> None:
        before = most_recent_anchor(utc(2025, 10, 25, 12), 10, PARIS)
        after = next_anchor(utc(2025, 10, 25, 12), 10, PARIS)
        assert after - before == timedelta(hours=25)

    def test_naive_now_treated_as_utc(self) -> None:
        naive = datetime(2025, 1, 15, 12)
        assert most_recent_anchor(naive, 10, PARIS) == utc(2025, 1, 15, 9)

    def test_other_timezone(self) -> None:
        # 07:00 in New York (UTC-5), anchor 06:00 local = 11:00 UTC
        assert most_recent_anchor(utc(2025, 1, 15, 12), 6, NEW_YORK) == utc(2025, 1, 15, 11)


class TestWeeklyAnchor:
    """Tests for the Monday 00:00 anchor."""

    def test_midweek(self) -> None:
        # Wednesday 2025-01-15; Monday 00:00 Paris is Sunday 23:00 UTC
        anchor = most_recent_anchor(utc(2025, 1, 15, 12), 0, PARIS, weekday=0)
        assert anchor == utc(2025, 1, 12, 23)

    def test_monday_after_midnight(self) -> None:
        anchor = most_recent_anchor(utc(2025, 1, 12, 23, 30), 0, PARIS, weekday=0)
        assert anchor == utc(2025, 1, 12, 23)

    def test_sunday_late_uses_previous_week(self) -> None:
        anchor = most_recent_anchor(utc(2025, 1, 12, 22, 30), 0, PARIS, weekday=0)
        assert anchor == utc(2025, 1, 5, 23)

    def test_next_weekly(self) -> None:
        assert next_anchor(utc(2025, 1, 15, 12), 0, PARIS, weekday=0) == utc(2025, 1, 19, 23)


class TestMonthlyAnchor:
    """Tests for the 1st-of-month 00:00 anchor."""

    def test_mid_month(self) -> None:
        anchor = most_recent_anchor(utc(2025, 1, 15, 12), 0, PARIS, day_of_month=1)
        assert anchor == utc(2024, 12, 31, 23)

    def test_last_evening_of_month_uses_previous_month(self) -> None:
        # 23:30 on 31 December in Paris
        anchor = most_recent_anchor(utc(2024, 12, 31, 22, 30), 0, PARIS, day_of_month=1)
        assert anchor == utc(2024, 11, 30, 23)

    def test_next_monthly_crosses_year(self) -> None:
        anchor = next_anchor(utc(2024, 12, 15, 12), 0, PARIS, day_of_month=1)
        assert anchor == utc(2024, 12, 31, 23)

    def test_next_monthly_in_summer(self) -> None:
        anchor = next_anchor(utc(2025, 6, 15), 0, PARIS, day_of_month=1)
        assert anchor == utc(2025, 6, 30, 22)


class TestAnchorValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"hour_of_day": 24},
            {"hour_of_day": -1},
            {"hour_of_day": 0, "weekday": 7},
            {"hour_of_day": 0, "day_of_month": 31},
            {"hour_of_day": 0, "weekday": 0, "day_of_month": 1},
        ],
    )
    def test_invalid_arguments(self, kwargs: dict[str, int]) -> None:
        with pytest.raises(ValueError):
            most_recent_anchor(utc(2025, 1, 15), tz=PARIS, **kwargs)

    def test_next_is_strictly_after_now(self) -> None:
        now = utc(2025, 1, 15, 9)  # exactly the anchor
        assert next_anchor(now, 10, PARIS) == utc(2025, 1, 16, 9)


class TestFormatDuration:
    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(0), "now"),
            (timedelta(seconds=59), "now"),
            (timedelta(minutes=-5), "now"),
            (timedelta(minutes=45), "45min"),
            (timedelta(hours=3), "3h"),
            (timedelta(hours=2, minutes=30), "2h 30min"),
            (timedelta(hours=26, minutes=5), "26h 5min"),
        ],
    )
    def test_format(self, delta: timedelta, expected: str) -> None:
        assert format_duration(delta) == expected
