"""Timezone-aware reset anchors.

A reset anchor is a recurring local wall-clock instant (every day at 10:00,
every Monday at 00:00, the 1st of each month at 00:00). All arithmetic is
done on local calendar dates and converted back to UTC, so DST transitions
shift the UTC instant rather than the local hour.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo

from packages.common.clock import ensure_utc


def _validate(hour_of_day: int, weekday: int | None, day_of_month: int | None) -> None:
    if not 0 <= hour_of_day <= 23:
        raise ValueError(f"hour_of_day must be 0..23, got {hour_of_day}")
    if weekday is not None and day_of_month is not None:
        raise ValueError("weekday and day_of_month are mutually exclusive")
    if weekday is not None and not 0 <= weekday <= 6:
        raise ValueError(f"weekday must be 0 (Monday)..6, got {weekday}")
    if day_of_month is not None and not 1 <= day_of_month <= 28:
        raise ValueError(f"day_of_month must be 1..28, got {day_of_month}")


def _at(day: date, hour_of_day: int, tz: tzinfo) -> datetime:
    return ensure_utc(datetime.combine(day, time(hour_of_day), tzinfo=tz))


def _shift_month(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    return day.replace(year=index // 12, month=index % 12 + 1)


def most_recent_anchor(
    now: datetime,
    hour_of_day: int,
    tz: tzinfo,
    *,
    weekday: int | None = None,
    day_of_month: int | None = None,
) -> datetime:
    """Latest anchor instant at or before ``now``, in UTC.

    Args:
        now: Reference instant.
        hour_of_day: Local hour of the anchor.
        tz: Timezone the anchor is defined in.
        weekday: Restrict to one weekday (0 = Monday).
        day_of_month: Restrict to one day of the month (1..28).
    """
    _validate(hour_of_day, weekday, day_of_month)
    now = ensure_utc(now)
    day = now.astimezone(tz).date()

    if weekday is not None:
        day -= timedelta(days=(day.weekday() - weekday) % 7)
        anchor = _at(day, hour_of_day, tz)
        return anchor if anchor <= now else _at(day - timedelta(days=7), hour_of_day, tz)

    if day_of_month is not None:
        day = day.replace(day=day_of_month)
        anchor = _at(day, hour_of_day, tz)
        return anchor if anchor <= now else _at(_shift_month(day, -1), hour_of_day, tz)

    anchor = _at(day, hour_of_day, tz)
    return anchor if anchor <= now else _at(day - timedelta(days=1), hour_of_day, tz)


def next_anchor(
    now: datetime,
    hour_of_day: int,
    tz: tzinfo,
    *,
    weekday: int | None = None,
    day_of_month: int | None = None,
) -> datetime:
    """First anchor instant strictly after ``now``, in UTC."""
    recent = most_recent_anchor(
        now, hour_of_day, tz, weekday=weekday, day_of_month=day_of_month
    )
    day = recent.astimezone(tz).date()
    if weekday is not None:
        return _at(day + timedelta(days=7), hour_of_day, tz)
    if day_of_month is not None:
        return _at(_shift_month(day, 1), hour_of_day, tz)
    return _at(day + timedelta(days=1), hour_of_day, tz)


def format_duration(delta: timedelta) -> str:
    """Human-readable remaining time: "now", "45min", "3h" or "2h 30min"."""
    minutes = max(int(delta.total_seconds() // 60), 0)
    hours, minutes = divmod(minutes, 60)
    if hours == 0 and minutes == 0:
        return "now"
    if hours == 0:
        return f"{minutes}min"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}min"
