from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from ridecounts.pipeline.windows import (
    backfill_window,
    completed_week,
    date_range_window,
    forward_window,
    sunday_based_dow,
    week_bounds,
)
from ridecounts.schemas.core import FetchWindow


UTC = timezone.utc
NOW = datetime(2026, 2, 8, 10, 30, tzinfo=UTC)


def test_forward_window_without_data_looks_back_one_day() -> None:
    window = forward_window(None, NOW)

    assert window is not None
    assert window.start == datetime(2026, 2, 7, 10, tzinfo=UTC)
    assert window.end == datetime(2026, 2, 8, 9, tzinfo=UTC)


def test_forward_window_starts_after_watermark_and_excludes_current_hour() -> None:
    window = forward_window(datetime(2026, 2, 8, 5, tzinfo=UTC), NOW)

    assert window is not None
    assert window.time_start == "2026-02-08 06:00:00Z"
    assert window.time_end == "2026-02-08 09:00:00Z"


@pytest.mark.parametrize("latest_hour", [8, 9, 10])
def test_forward_window_is_none_when_caught_up(latest_hour: int) -> None:
    assert forward_window(datetime(2026, 2, 8, latest_hour, tzinfo=UTC), NOW) is None


def test_backfill_window_without_data_ends_yesterday() -> None:
    window = backfill_window(None, NOW, days=90)

    assert window is not None
    assert window.end == datetime(2026, 2, 7, 23, 59, 59, tzinfo=UTC)
    assert window.start == window.end - timedelta(days=90)


def test_backfill_window_never_passes_oldest() -> None:
    oldest = datetime(2026, 1, 10, 0, tzinfo=UTC)
    window = backfill_window(oldest, NOW, days=30)

    assert window is not None
    assert window.end == oldest
    assert window.start == datetime(2025, 12, 11, 0, tzinfo=UTC)


def test_backfill_window_clamps_to_earliest_date() -> None:
    oldest = datetime(2026, 1, 10, 0, tzinfo=UTC)
    window = backfill_window(oldest, NOW, days=30, earliest=date(2026, 1, 1))

    assert window is not None
    assert window.start == datetime(2026, 1, 1, tzinfo=UTC)

    assert backfill_window(datetime(2026, 1, 1, tzinfo=UTC), NOW, days=30, earliest=date(2026, 1, 1)) is None


def test_date_range_window_covers_whole_days() -> None:
    window = date_range_window(date(2026, 1, 1), date(2026, 1, 2))
    assert str(window) == "[2026-01-01 00:00:00Z .. 2026-01-02 23:59:59Z]"


def test_fetch_window_rejects_inverted_range() -> None:
    with pytest.raises(ValueError):
        FetchWindow(start=datetime(2026, 1, 2, tzinfo=UTC), end=datetime(2026, 1, 1, tzinfo=UTC))


def test_fetch_window_treats_naive_datetimes_as_utc() -> None:
    window = FetchWindow(start=datetime(2026, 1, 1, 5), end=datetime(2026, 1, 1, 6))
    assert window.start.tzinfo is not None
    assert window.time_start == "2026-01-01 05:00:00Z"


def test_sunday_is_day_zero() -> None:
    assert sunday_based_dow(date(2026, 2, 8)) == 0
    assert sunday_based_dow(date(2026, 2, 9)) == 1
    assert sunday_based_dow(date(2026, 2, 14)) == 6


def test_completed_week_on_sunday_is_previous_week() -> None:
    # Regression: running on Sunday 2026-02-08 must aggregate 2026-02-01..2026-02-07.
    assert completed_week(date(2026, 2, 8)) == (date(2026, 2, 1), date(2026, 2, 7))


@pytest.mark.parametrize("offset", range(7))
def test_completed_week_for_every_weekday(offset: int) -> None:
    today = date(2026, 2, 8) + timedelta(days=offset)
    assert completed_week(today) == (date(2026, 2, 1), date(2026, 2, 7))


def test_completed_week_next_sunday_rolls_forward() -> None:
    assert completed_week(date(2026, 2, 15)) == (date(2026, 2, 8), date(2026, 2, 14))


def test_completed_week_across_year_boundary() -> None:
    # 2026-01-01 is a Thursday.
    assert completed_week(date(2026, 1, 1)) == (date(2025, 12, 21), date(2025, 12, 27))


def test_week_bounds_cover_sunday_through_saturday() -> None:
    start, end = week_bounds(date(2026, 2, 1))
    assert start == datetime(2026, 2, 1, 0, 0, 0, tzinfo=UTC)
    assert end == datetime(2026, 2, 7, 23, 59, 59, tzinfo=UTC)
