from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.dates import as_utc, start_of_day, utc_now


# Today must reach this share of yesterday's row count to count as healthy.
HEALTHY_RATIO = 0.7


@dataclass(frozen=True)
class DayStats:
    day: date
    record_count: int
    sensor_count: int
    earliest: Optional[datetime]
    latest: Optional[datetime]


@dataclass(frozen=True)
class HealthReport:
    checked_at: datetime
    today: DayStats
    yesterday: DayStats
    is_healthy: bool
    worker_likely_ran: bool
    data_freshness_hours: Optional[float]


def evaluate_health(today_count: int, yesterday_count: int) -> tuple[bool, bool]:
    """(is_healthy, worker_likely_ran) for the given row counts."""

    return today_count >= yesterday_count * HEALTHY_RATIO, today_count > 0


class HealthMonitor:
    """Read-only ingestion diagnostics: today's vs yesterday's stored rows (UTC calendar days)."""

    def __init__(self, store: SqliteStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def _day_stats(self, day_start: datetime) -> DayStats:
        raw = self._store.day_stats(day_start, day_start + timedelta(days=1) - timedelta(seconds=1))
        return DayStats(day=day_start.date(), **raw)

    def check(self, now: Optional[datetime] = None) -> HealthReport:
        now = as_utc(now or self._clock())
        today_start = start_of_day(now)
        today = self._day_stats(today_start)
        yesterday = self._day_stats(today_start - timedelta(days=1))

        is_healthy, worker_likely_ran = evaluate_health(today.record_count, yesterday.record_count)

        latest_candidates = [ts for ts in (today.latest, yesterday.latest) if ts is not None]
        freshness: Optional[float] = None
        if latest_candidates:
            freshness = round((now - max(latest_candidates)).total_seconds() / 3600.0, 2)

        return HealthReport(
            checked_at=now,
            today=today,
            yesterday=yesterday,
            is_healthy=is_healthy,
            worker_likely_ran=worker_likely_ran,
            data_freshness_hours=freshness,
        )
