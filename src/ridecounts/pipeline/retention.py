from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Optional

from ridecounts.pipeline.windows import completed_week, week_bounds
from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.dates import as_utc, format_api_datetime, utc_now


logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7


def prune_cutoff(now: datetime, retention_days: int) -> datetime:
    """
    Oldest hour to keep: `now - retention_days`, moved back to the start of the most recent
    completed week when that is earlier.

    Rows the weekly rollup still has to read are never deleted, whatever hour the prune runs.
    """

    now = as_utc(now)
    cutoff = now - timedelta(days=retention_days)
    week_start, _week_end = week_bounds(completed_week(now.date())[0])
    return min(cutoff, week_start)


def prune_hourly(
    store: SqliteStore,
    *,
    now: Optional[datetime] = None,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> int:
    """Delete hourly rows older than `prune_cutoff(now, retention_days)`; returns the number deleted."""

    if retention_days < 0:
        raise ValueError(f"retention_days must be >= 0, got {retention_days}")
    cutoff = prune_cutoff(now or utc_now(), retention_days)
    deleted = store.delete_hourly_before(cutoff)
    logger.info("Deleted %s hourly records older than %s", deleted, format_api_datetime(cutoff))
    return deleted
