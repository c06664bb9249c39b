from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
import logging
import re
import time
from typing import Callable, Optional

from ridecounts.ingestion.archive import RawReportArchive
from ridecounts.ingestion.traffic_client import TrafficApiClient
from ridecounts.ingestion.writer import HourlyWriter
from ridecounts.pipeline.sync import log_summary
from ridecounts.pipeline.windows import backfill_window, date_range_window
from ridecounts.schemas.core import FetchWindow, RunSummary, SensorLocation
from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.dates import parse_compact_date, utc_now


logger = logging.getLogger(__name__)

_COMPACT_DATE_RE = re.compile(r"^\d{8}$")


class BackfillRequestError(ValueError):
    pass


class NoDataError(RuntimeError):
    pass


@dataclass(frozen=True)
class BackfillRequest:
    sensor_id: int
    start_date: date
    end_date: date
    start_date_str: str
    end_date_str: str


def parse_backfill_request(sensor_id: str, start_date: str, end_date: str) -> BackfillRequest:
    """Validate an explicit backfill request: positive integer id and YYYYMMDD dates, end >= start."""

    sid = (sensor_id or "").strip()
    if not sid:
        raise BackfillRequestError("sensor_id cannot be empty")
    if not sid.isdigit() or int(sid) <= 0:
        raise BackfillRequestError(f"sensor_id must be a positive integer, got {sensor_id!r}")

    parsed: list[date] = []
    for name, raw in (("start_date", start_date), ("end_date", end_date)):
        if not raw:
            raise BackfillRequestError(f"Missing required parameter: {name}")
        if not _COMPACT_DATE_RE.match(raw):
            raise BackfillRequestError(f"Invalid date format for {name} (expected YYYYMMDD)")
        try:
            parsed.append(parse_compact_date(raw))
        except ValueError as e:
            raise BackfillRequestError(f"Invalid date: {raw}") from e

    start, end = parsed
    if end < start:
        raise BackfillRequestError("end_date must be greater than or equal to start_date")
    return BackfillRequest(
        sensor_id=int(sid),
        start_date=start,
        end_date=end,
        start_date_str=start_date,
        end_date_str=end_date,
    )


class BackfillPlanner:
    """
    Walk each sensor's history backwards, `days` at a time, from its oldest stored hour.

    Which sensors get a turn is derived from stored data only: sensors without rows first, then
    those with the least history. Nothing else needs to be remembered between invocations.
    """

    def __init__(
        self,
        *,
        store: SqliteStore,
        client: TrafficApiClient,
        writer: HourlyWriter,
        archive: Optional[RawReportArchive] = None,
        days: int = 90,
        batch_size: int = 10,
        request_delay_s: float = 10.0,
        earliest_date: Optional[date] = None,
        max_calls: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if days < 1:
            raise ValueError(f"days must be >= 1, got {days}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if max_calls is not None and max_calls < 1:
            raise ValueError(f"max_calls must be >= 1, got {max_calls}")
        self._store = store
        self._client = client
        self._writer = writer
        self._archive = archive
        self._days = int(days)
        self._batch_size = int(batch_size)
        self._max_calls = int(max_calls) if max_calls is not None else self._batch_size * 3
        self._request_delay_s = max(float(request_delay_s), 0.0)
        self._earliest_date = earliest_date
        self._sleep = sleep
        self._clock = clock

    def plan(self, now: datetime) -> tuple[int, list[tuple[SensorLocation, FetchWindow]]]:
        """Return (active sensor count, sensors that still have a gap with their windows) in priority order."""

        sensors = self._store.list_active_sensors()
        oldest_by_id = self._store.oldest_hours()

        def priority(sensor: SensorLocation) -> tuple[int, float, int]:
            oldest = oldest_by_id.get(sensor.segment_id)
            if oldest is None:
                return (0, 0.0, sensor.segment_id)
            return (1, -oldest.timestamp(), sensor.segment_id)

        planned: list[tuple[SensorLocation, FetchWindow]] = []
        for sensor in sorted(sensors, key=priority):
            window = backfill_window(
                oldest_by_id.get(sensor.segment_id),
                now,
                days=self._days,
                earliest=self._earliest_date,
            )
            if window is None:
                continue
            planned.append((sensor, window))
        return len(sensors), planned

    def run(self, now: Optional[datetime] = None) -> RunSummary:
        started = time.monotonic()
        now = now or self._clock()
        summary = RunSummary(kind="backfill")

        total_active, planned = self.plan(now)
        summary.skipped += total_active - len(planned)
        logger.info(
            "Starting backfill: %s sensors with gaps, up to %s productive (days=%s, max_calls=%s)",
            len(planned),
            self._batch_size,
            self._days,
            self._max_calls,
        )

        # Only sensors that return data count toward batch_size. Upstream calls are capped at max_calls.
        calls = 0
        for sensor, window in planned:
            if summary.updated >= self._batch_size or calls >= self._max_calls:
                break
            segment_id = sensor.segment_id
            try:
                # Lower priority than forward sync: a longer pause between upstream calls.
                if calls > 0 and self._request_delay_s > 0:
                    self._sleep(self._request_delay_s)
                calls += 1

                logger.info("[call %s/%s] backfilling segment %s %s", calls, self._max_calls, segment_id, window)
                inserted, fetched = self._fetch_and_store(segment_id, window)
                if fetched == 0:
                    logger.info("  segment %s: no data available", segment_id)
                    summary.skipped += 1
                    continue
                summary.rows_inserted += inserted
                summary.updated += 1
                summary.processed_ids.append(segment_id)
                logger.info("  segment %s: inserted %s hours (%s fetched)", segment_id, inserted, fetched)
            except Exception as e:
                summary.errored += 1
                summary.errors[segment_id] = str(e)
                logger.exception("  segment %s failed", segment_id)

        summary.duration_s = time.monotonic() - started
        log_summary(summary)
        return summary

    def backfill_range(self, sensor_id: str, start_date: str, end_date: str) -> int:
        """
        Fetch an explicit whole-day range for one sensor, archive it and write it.

        Raises `BackfillRequestError` for bad input and `NoDataError` when upstream has no rows.
        """

        request = parse_backfill_request(sensor_id, start_date, end_date)
        window = date_range_window(request.start_date, request.end_date)
        logger.info("Backfilling segment %s %s", request.sensor_id, window)
        inserted, fetched = self._fetch_and_store(request.sensor_id, window)
        if fetched == 0:
            raise NoDataError(
                f"No data for segment {request.sensor_id} between {request.start_date_str} and {request.end_date_str}"
            )
        return inserted

    def _fetch_and_store(self, segment_id: int, window: FetchWindow) -> tuple[int, int]:
        reports = self._client.fetch_hourly(segment_id, window)
        if not reports:
            return 0, 0
        if self._archive is not None:
            self._archive.write(segment_id, window.start, window.end, reports)
        inserted = self._writer.write_hourly(segment_id, reports)
        return inserted, len(reports)
