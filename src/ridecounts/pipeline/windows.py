from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from ridecounts.schemas.core import FetchWindow
from ridecounts.utils.dates import as_utc, floor_hour, start_of_day


ONE_HOUR = timedelta(hours=1)


def forward_window(
    latest: Optional[datetime],
    now: datetime,
    *,
    initial_lookback_hours: int = 24,
) -> Optional[FetchWindow]:
    """
    Catch-up window from the stored watermark to the last complete hour.

    The current hour is still accumulating upstream, so the window ends at `now_hour - 1h`.
    Returns None when there is nothing to fetch (`start >= end`).
    """

    now_hour = floor_hour(now)
    end = now_hour - ONE_HOUR
    if latest is None:
        start = now_hour - timedelta(hours=initial_lookback_hours)
    else:
        start = floor_hour(latest) + ONE_HOUR
    if start >= end:
        return None
    return FetchWindow(start=start, end=end)


def yesterday_end(now: datetime) -> datetime:
    return start_of_day(now) - timedelta(seconds=1)


def backfill_window(
    oldest: Optional[datetime],
    now: datetime,
    *,
    days: int,
    earliest: Optional[date] = None,
) -> Optional[FetchWindow]:
    """
    Window of `days` immediately before the oldest stored hour (or before yesterday's end when
    the sensor has no rows). Never reaches past `oldest`; `earliest` clamps how far back to go.
    """

    if oldest is None:
        end = yesterday_end(now)
    else:
        end = as_utc(oldest)
    start = end - timedelta(days=days)
    if earliest is not None:
        start = max(start, datetime.combine(earliest, time(0, 0), tzinfo=timezone.utc))
    if start >= end:
        return None
    return FetchWindow(start=start, end=end)


def date_range_window(start_date: date, end_date: date) -> FetchWindow:
    """Whole-day window: `start_date 00:00:00Z` through `end_date 23:59:59Z`."""

    start = datetime.combine(start_date, time(0, 0), tzinfo=timezone.utc)
    end = datetime.combine(end_date, time(23, 59, 59), tzinfo=timezone.utc)
    return FetchWindow(start=start, end=end)


def sunday_based_dow(day: date) -> int:
    # `date.weekday()` is Monday=0; the rollup calendar counts from Sunday=0.
    return (day.weekday() + 1) % 7


def completed_week(today: date) -> tuple[date, date]:
    """
    (Sunday, Saturday) of the most recent fully completed Sunday-Saturday week.

    On a Sunday the week that ended yesterday is the completed one, e.g. 2026-02-08 ->
    (2026-02-01, 2026-02-07).
    """

    dow = sunday_based_dow(today)
    if dow == 0:
        sunday = today - timedelta(days=7)
    else:
        sunday = today - timedelta(days=dow + 7)
    return sunday, sunday + timedelta(days=6)


def week_bounds(sunday: date) -> tuple[datetime, datetime]:
    start = datetime.combine(sunday, time(0, 0), tzinfo=timezone.utc)
    end = datetime.combine(sunday + timedelta(days=6), time(23, 59, 59), tzinfo=timezone.utc)
    return start, end
