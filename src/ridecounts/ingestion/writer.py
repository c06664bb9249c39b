from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from ridecounts.ingestion.records import normalize_report
from ridecounts.ingestion.report_schema import HourlyReport
from ridecounts.schemas.core import HourlySample, RecordRejection
from ridecounts.storage.sqlite_store import MAX_STATEMENTS_PER_BATCH, SqliteStore, StorageWriteError


logger = logging.getLogger(__name__)


def chunked(items: Sequence[HourlySample], size: int) -> Iterable[Sequence[HourlySample]]:
    if size < 1:
        raise ValueError("size must be >= 1")
    for i in range(0, len(items), size):
        yield items[i : i + size]


class HourlyWriter:
    """
    Write validated upstream reports as idempotent hourly upserts.

    Bad records are dropped one by one (logged, never fatal). A failing chunk raises and stops
    the remaining chunks for that sensor; chunks already committed are kept.
    """

    def __init__(self, store: SqliteStore, *, batch_size: int = MAX_STATEMENTS_PER_BATCH) -> None:
        if not 1 <= batch_size <= MAX_STATEMENTS_PER_BATCH:
            raise ValueError(f"batch_size must be in 1..{MAX_STATEMENTS_PER_BATCH}, got {batch_size}")
        self._store = store
        self._batch_size = batch_size

    def normalize_all(
        self,
        sensor_id: int,
        reports: Iterable[HourlyReport | Mapping[str, Any]],
    ) -> list[HourlySample]:
        samples: list[HourlySample] = []
        for idx, report in enumerate(reports):
            result = normalize_report(report, segment_id=sensor_id)
            if isinstance(result, RecordRejection):
                logger.warning(
                    "Skipping record %s for segment %s (%s): %s",
                    idx,
                    sensor_id,
                    result.reason,
                    result.detail,
                )
                continue
            samples.append(result)
        return samples

    def write_hourly(self, sensor_id: int, reports: Iterable[HourlyReport | Mapping[str, Any]]) -> int:
        samples = self.normalize_all(sensor_id, reports)
        if not samples:
            return 0

        inserted = 0
        for chunk_no, chunk in enumerate(chunked(samples, self._batch_size)):
            try:
                inserted += self._store.upsert_hourly(chunk)
            except StorageWriteError:
                logger.error(
                    "Error inserting chunk %s (%s rows) for segment %s; %s rows already committed",
                    chunk_no,
                    len(chunk),
                    sensor_id,
                    inserted,
                )
                raise
        return inserted
