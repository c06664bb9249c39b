from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
import logging
import time
from typing import Callable, Optional

import pandas as pd

from ridecounts.pipeline.windows import completed_week, week_bounds
from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.dates import format_api_datetime, utc_now


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeeklyRollupResult:
    week_ending: date
    week_start: datetime
    week_end: datetime
    sensors: int
    total_bikes: int
    duration_s: float


class WeeklyRollupAggregator:
    """
    Recompute per-sensor bike totals for the most recently completed Sunday-Saturday week.

    `week_ending` is the Sunday that starts the window. Existing rows for that week are deleted
    and re-inserted in one transaction, so re-running for the same week is harmless.
    """

    def __init__(self, store: SqliteStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def run(self, today: Optional[date] = None) -> WeeklyRollupResult:
        started = time.monotonic()
        today = today or self._clock().date()
        sunday, _saturday = completed_week(today)
        week_start, week_end = week_bounds(sunday)
        logger.info(
            "Aggregating week ending %s (%s to %s)",
            sunday.isoformat(),
            format_api_datetime(week_start),
            format_api_datetime(week_end),
        )

        sensors = self._store.replace_weekly_stats(sunday, week_start, week_end)
        rows = self._store.weekly_stats(sunday)
        result = WeeklyRollupResult(
            week_ending=sunday,
            week_start=week_start,
            week_end=week_end,
            sensors=sensors,
            total_bikes=sum(r.total_bikes for r in rows),
            duration_s=time.monotonic() - started,
        )
        logger.info(
            "Weekly aggregation complete: %s sensors, %s bikes (%.2fs)",
            result.sensors,
            result.total_bikes,
            result.duration_s,
        )
        return result

    def county_totals(self, week_ending: date) -> pd.DataFrame:
        """
        County-level totals for a stored week: county, total_bikes, sensor_count, avg_daily.

        Sensors without a county are grouped under "Unknown". Sorted by total_bikes descending.
        """

        df = self._store.weekly_frame(week_ending)
        if df.empty:
            return pd.DataFrame(columns=["county", "total_bikes", "sensor_count", "avg_daily"])

        df["county"] = df["county"].fillna("Unknown").astype(str)
        out = (
            df.groupby("county", as_index=False)
            .agg(total_bikes=("total_bikes", "sum"), sensor_count=("segment_id", "nunique"))
            .sort_values(["total_bikes", "county"], ascending=[False, True])
            .reset_index(drop=True)
        )
        # Same rule as the per-sensor rows: week total / 7, rounded half away from zero.
        out["avg_daily"] = (out["total_bikes"] / 7 + 0.5).floordiv(1).astype(int)
        out["total_bikes"] = out["total_bikes"].astype(int)
        return out[["county", "total_bikes", "sensor_count", "avg_daily"]]

    def national_total(self, week_ending: date) -> dict[str, int]:
        rows = self._store.weekly_stats(week_ending)
        total = sum(r.total_bikes for r in rows)
        return {
            "total_bikes": total,
            "sensor_count": len(rows),
            "avg_daily": int(total / 7 + 0.5),
        }
