from __future__ import annotations

from datetime import datetime
import logging
import time
from typing import Callable, Optional

from ridecounts.ingestion.traffic_client import TrafficApiClient
from ridecounts.ingestion.writer import HourlyWriter
from ridecounts.pipeline.retention import DEFAULT_RETENTION_DAYS, prune_hourly
from ridecounts.pipeline.windows import forward_window
from ridecounts.schemas.core import RunSummary
from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.dates import utc_now


logger = logging.getLogger(__name__)


class WatermarkSync:
    """
    Forward catch-up: for every active sensor, fetch from the hour after the stored watermark
    up to the last complete hour.

    Nothing is remembered between runs; each run re-derives its work from the stored rows, so a
    crashed or overlapping run at worst repeats upstream fetches.
    """

    def __init__(
        self,
        *,
        store: SqliteStore,
        client: TrafficApiClient,
        writer: HourlyWriter,
        request_delay_s: float = 5.0,
        initial_lookback_hours: int = 24,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._client = client
        self._writer = writer
        self._request_delay_s = max(float(request_delay_s), 0.0)
        self._initial_lookback_hours = int(initial_lookback_hours)
        self._retention_days = int(retention_days)
        self._sleep = sleep
        self._clock = clock

    def run(self, now: Optional[datetime] = None) -> RunSummary:
        started = time.monotonic()
        now = now or self._clock()
        summary = RunSummary(kind="sync")

        # A failure here (e.g. missing table) fails the whole run on purpose.
        sensors = self._store.list_active_sensors()
        logger.info("Starting forward sync for %s active sensors at %s", len(sensors), now.isoformat())

        calls_made = 0
        for idx, sensor in enumerate(sensors, start=1):
            segment_id = sensor.segment_id
            try:
                latest = self._store.latest_hour(segment_id)
                window = forward_window(latest, now, initial_lookback_hours=self._initial_lookback_hours)
                if window is None:
                    logger.info("[%s/%s] segment %s already up to date", idx, len(sensors), segment_id)
                    summary.skipped += 1
                    continue

                # Shared upstream rate limit: space out calls, but never delay the first one.
                if calls_made > 0 and self._request_delay_s > 0:
                    self._sleep(self._request_delay_s)
                calls_made += 1

                logger.info(
                    "[%s/%s] segment %s last=%s fetching %s",
                    idx,
                    len(sensors),
                    segment_id,
                    None if latest is None else latest.isoformat(),
                    window,
                )
                reports = self._client.fetch_hourly(segment_id, window)
                if not reports:
                    logger.info("  segment %s: no new data available", segment_id)
                    summary.skipped += 1
                    continue

                inserted = self._writer.write_hourly(segment_id, reports)
                summary.rows_inserted += inserted
                summary.updated += 1
                summary.processed_ids.append(segment_id)
                logger.info("  segment %s: inserted %s of %s hours", segment_id, inserted, len(reports))
            except Exception as e:
                summary.errored += 1
                summary.errors[segment_id] = str(e)
                logger.exception("  segment %s failed", segment_id)

        summary.pruned = prune_hourly(self._store, now=now, retention_days=self._retention_days)
        summary.duration_s = time.monotonic() - started
        log_summary(summary)
        return summary


def log_summary(summary: RunSummary) -> None:
    logger.info(
        "%s complete in %.1fs: updated=%s skipped=%s errored=%s rows_inserted=%s pruned=%s ids=%s",
        summary.kind,
        summary.duration_s,
        summary.updated,
        summary.skipped,
        summary.errored,
        summary.rows_inserted,
        summary.pruned,
        ",".join(str(i) for i in summary.processed_ids) or "-",
    )
