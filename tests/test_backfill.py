from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
import json

import pytest

from ridecounts.ingestion.archive import RawReportArchive
from ridecounts.ingestion.traffic_client import TrafficClientError
from ridecounts.ingestion.writer import HourlyWriter
from ridecounts.pipeline.backfill import BackfillPlanner, BackfillRequestError, NoDataError, parse_backfill_request
from ridecounts.schemas.core import FetchWindow, HourlySample
from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.dates import floor_hour


UTC = timezone.utc
NOW = datetime(2026, 2, 8, 10, 0, tzinfo=UTC)


class FakeClient:
    def __init__(self, *, empty=(), errors=None) -> None:  # type: ignore[no-untyped-def]
        self.calls: list[tuple[int, FetchWindow]] = []
        self._empty = set(empty)
        self._errors = errors or {}

    def fetch_hourly(self, sensor_id: int, window: FetchWindow) -> list[dict]:
        self.calls.append((sensor_id, window))
        if sensor_id in self._errors:
            raise self._errors[sensor_id]
        if sensor_id in self._empty:
            return []
        out = []
        ts = floor_hour(window.start)
        while ts <= window.end:
            out.append({"date": ts.strftime("%Y-%m-%d"), "hour": ts.hour, "bike": 1})
            ts += timedelta(hours=1)
        return out


def _add_sensors(store: SqliteStore, *ids: int) -> None:
    store.upsert_sensor_locations([{"segment_id": i, "timezone": "Europe/Dublin"} for i in ids])


def _seed(store: SqliteStore, segment_id: int, ts: datetime) -> None:
    store.upsert_hourly([HourlySample(segment_id=segment_id, hour_timestamp=ts, bike=1)])


def _planner(store: SqliteStore, client: FakeClient, **kwargs) -> BackfillPlanner:  # type: ignore[no-untyped-def]
    params = {"days": 3, "batch_size": 10, "request_delay_s": 10.0, "sleep": lambda _s: None}
    params.update(kwargs)
    return BackfillPlanner(store=store, client=client, writer=HourlyWriter(store), **params)  # type: ignore[arg-type]


def test_sensor_without_data_starts_from_yesterday(store) -> None:
    _add_sensors(store, 1)
    client = FakeClient()

    summary = _planner(store, client).run(now=NOW)

    _sid, window = client.calls[0]
    assert window.time_end == "2026-02-07 23:59:59Z"
    assert window.time_start == "2026-02-04 23:59:59Z"
    assert summary.updated == 1
    assert summary.rows_inserted > 0


def test_oldest_timestamp_strictly_decreases_across_runs(store) -> None:
    _add_sensors(store, 1)
    planner = _planner(store, FakeClient())

    planner.run(now=NOW)
    first = store.oldest_hour(1)
    planner.run(now=NOW)
    second = store.oldest_hour(1)

    assert first is not None and second is not None
    assert second < first
    assert first - second == timedelta(days=3)


def test_sensors_with_least_history_go_first(store) -> None:
    _add_sensors(store, 1, 2, 3)
    _seed(store, 1, datetime(2026, 1, 1, tzinfo=UTC))
    _seed(store, 3, datetime(2026, 2, 5, tzinfo=UTC))
    client = FakeClient()

    summary = _planner(store, client, batch_size=2).run(now=NOW)

    assert [c[0] for c in client.calls] == [2, 3]
    assert summary.processed_ids == [2, 3]


def test_delay_between_backfill_calls(store) -> None:
    _add_sensors(store, 1, 2, 3)
    slept: list[float] = []

    _planner(store, FakeClient(), sleep=slept.append).run(now=NOW)

    assert slept == [10.0, 10.0]


def test_reached_earliest_date_is_skipped(store) -> None:
    _add_sensors(store, 1)
    _seed(store, 1, datetime(2026, 1, 1, tzinfo=UTC))
    client = FakeClient()

    summary = _planner(store, client, earliest_date=date(2026, 1, 1)).run(now=NOW)

    assert client.calls == []
    assert summary.skipped == 1


def test_failure_and_empty_results_are_isolated(store) -> None:
    _add_sensors(store, 1, 2, 3)
    client = FakeClient(empty={2}, errors={1: TrafficClientError("bad segment", status_code=404)})

    summary = _planner(store, client).run(now=NOW)

    assert summary.errored == 1
    assert summary.skipped == 1
    assert summary.updated == 1
    assert summary.processed_ids == [3]


def test_empty_sensor_ahead_in_queue_does_not_starve_the_next(store) -> None:
    _add_sensors(store, 1, 2)
    client = FakeClient(empty={1})
    planner = _planner(store, client, batch_size=1)

    oldest: list[datetime] = []
    for _ in range(5):
        client.calls.clear()
        summary = planner.run(now=NOW)
        assert [c[0] for c in client.calls] == [1, 2]
        assert summary.processed_ids == [2]
        oldest.append(store.oldest_hour(2))  # type: ignore[arg-type]

    assert oldest == sorted(oldest, reverse=True)
    assert len(set(oldest)) == 5


def test_failing_sensors_do_not_block_batch(store) -> None:
    _add_sensors(store, 1, 2, 3)
    client = FakeClient(errors={1: TrafficClientError("gone", status_code=404)})

    summary = _planner(store, client, batch_size=1).run(now=NOW)

    assert [c[0] for c in client.calls] == [1, 2]
    assert summary.errored == 1
    assert summary.processed_ids == [2]


def test_upstream_calls_are_capped_per_run(store) -> None:
    _add_sensors(store, 1, 2, 3, 4, 5)
    client = FakeClient(empty={1, 2, 3, 4, 5})
    slept: list[float] = []

    summary = _planner(store, client, batch_size=1, max_calls=3, sleep=slept.append).run(now=NOW)

    assert [c[0] for c in client.calls] == [1, 2, 3]
    assert summary.skipped == 3
    assert slept == [10.0, 10.0]


def test_max_calls_must_be_positive(store) -> None:
    with pytest.raises(ValueError):
        _planner(store, FakeClient(), max_calls=0)


def test_raw_reports_are_archived(store, tmp_path) -> None:
    _add_sensors(store, 7)
    archive = RawReportArchive(tmp_path / "archive")

    _planner(store, FakeClient(), archive=archive).run(now=NOW)

    path = tmp_path / "archive" / "7" / "20260204-20260207.json"
    assert path.exists()
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload and payload[0]["bike"] == 1


def test_backfill_range_fetches_whole_days(store) -> None:
    client = FakeClient()

    inserted = _planner(store, client).backfill_range("42", "20260101", "20260102")

    _sid, window = client.calls[0]
    assert window.time_start == "2026-01-01 00:00:00Z"
    assert window.time_end == "2026-01-02 23:59:59Z"
    assert inserted == 48
    assert len(store.hourly_frame(42)) == 48


def test_backfill_range_without_data_raises(store) -> None:
    with pytest.raises(NoDataError):
        _planner(store, FakeClient(empty={42})).backfill_range("42", "20260101", "20260101")


@pytest.mark.parametrize(
    ("sensor_id", "start", "end"),
    [
        ("", "20260101", "20260102"),
        ("abc", "20260101", "20260102"),
        ("0", "20260101", "20260102"),
        ("-5", "20260101", "20260102"),
        ("1", "2026-01-01", "20260102"),
        ("1", "20260101", ""),
        ("1", "20260230", "20260301"),
        ("1", "20260105", "20260101"),
    ],
)
def test_invalid_backfill_requests_are_rejected(sensor_id: str, start: str, end: str) -> None:
    with pytest.raises(BackfillRequestError):
        parse_backfill_request(sensor_id, start, end)


def test_single_day_request_is_valid() -> None:
    req = parse_backfill_request("9000001435", "20260101", "20260101")
    assert req.sensor_id == 9000001435
    assert req.start_date == req.end_date == date(2026, 1, 1)
