from __future__ import annotations

from datetime import datetime, timedelta, timezone
import sqlite3

import pytest

from ridecounts.ingestion.traffic_client import TrafficServerError
from ridecounts.ingestion.writer import HourlyWriter
from ridecounts.pipeline.sync import WatermarkSync
from ridecounts.schemas.core import FetchWindow, HourlySample
from ridecounts.storage.sqlite_store import SqliteStore
from ridecounts.utils.dates import floor_hour


UTC = timezone.utc
NOW = datetime(2026, 2, 8, 10, 30, tzinfo=UTC)


def hourly_reports(window: FetchWindow, *, bike: int = 2) -> list[dict]:
    out = []
    ts = floor_hour(window.start)
    while ts <= window.end:
        out.append({"date": ts.strftime("%Y-%m-%d"), "hour": ts.hour, "bike": bike, "uptime": 1.0})
        ts += timedelta(hours=1)
    return out


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
        return hourly_reports(window)


def _add_sensors(store: SqliteStore, *ids: int, status: str = "active") -> None:
    store.upsert_sensor_locations([{"segment_id": i, "timezone": "Europe/Dublin", "status": status} for i in ids])


def _sync(store: SqliteStore, client: FakeClient, slept: list[float] | None = None) -> WatermarkSync:
    return WatermarkSync(
        store=store,
        client=client,  # type: ignore[arg-type]
        writer=HourlyWriter(store),
        request_delay_s=5.0,
        sleep=(slept.append if slept is not None else (lambda _s: None)),
    )


def test_first_run_fetches_last_day_up_to_previous_hour(store) -> None:
    _add_sensors(store, 1)
    client = FakeClient()

    summary = _sync(store, client).run(now=NOW)

    _sid, window = client.calls[0]
    assert window.time_start == "2026-02-07 10:00:00Z"
    assert window.time_end == "2026-02-08 09:00:00Z"
    assert summary.updated == 1
    assert summary.rows_inserted == 24
    assert summary.processed_ids == [1]
    assert store.latest_hour(1) == datetime(2026, 2, 8, 9, tzinfo=UTC)


def test_watermark_only_moves_forward(store) -> None:
    _add_sensors(store, 1)
    client = FakeClient()
    sync = _sync(store, client)

    sync.run(now=NOW)
    first = store.latest_hour(1)

    again = sync.run(now=NOW)
    assert again.skipped == 1
    assert len(client.calls) == 1
    assert store.latest_hour(1) == first

    later = NOW + timedelta(hours=2)
    sync.run(now=later)
    _sid, window = client.calls[-1]
    assert window.start == first + timedelta(hours=1)
    assert store.latest_hour(1) == floor_hour(later) - timedelta(hours=1)
    assert store.latest_hour(1) > first


def test_delay_only_between_upstream_calls(store) -> None:
    _add_sensors(store, 1, 2, 3)
    # Sensor 2 is already current, so only two upstream calls happen.
    store.upsert_hourly([HourlySample(segment_id=2, hour_timestamp=datetime(2026, 2, 8, 9, tzinfo=UTC))])
    slept: list[float] = []
    client = FakeClient()

    summary = _sync(store, client, slept).run(now=NOW)

    assert [c[0] for c in client.calls] == [1, 3]
    assert slept == [5.0]
    assert summary.updated == 2
    assert summary.skipped == 1


def test_sensor_failure_does_not_stop_the_run(store) -> None:
    _add_sensors(store, 1, 2, 3)
    client = FakeClient(errors={2: TrafficServerError("upstream down", status_code=503)})

    summary = _sync(store, client).run(now=NOW)

    assert summary.updated == 2
    assert summary.errored == 1
    assert "upstream down" in summary.errors[2]
    assert summary.processed_ids == [1, 3]
    assert store.latest_hour(2) is None
    assert store.latest_hour(3) is not None


def test_empty_upstream_result_counts_as_skipped(store) -> None:
    _add_sensors(store, 1)
    summary = _sync(store, FakeClient(empty={1})).run(now=NOW)

    assert summary.skipped == 1
    assert summary.updated == 0
    assert store.latest_hour(1) is None


def test_inactive_sensors_are_ignored(store) -> None:
    _add_sensors(store, 1)
    _add_sensors(store, 2, status="inactive")
    client = FakeClient()

    _sync(store, client).run(now=NOW)

    assert [c[0] for c in client.calls] == [1]


def test_run_ends_with_retention_pruning(store) -> None:
    _add_sensors(store, 1)
    old = NOW - timedelta(days=10)
    store.upsert_hourly([HourlySample(segment_id=1, hour_timestamp=old + timedelta(hours=i)) for i in range(3)])

    summary = _sync(store, FakeClient(empty={1})).run(now=NOW)

    assert summary.pruned == 3
    assert len(store.hourly_frame(1)) == 0


def test_sensor_list_failure_fails_the_run(tmp_path) -> None:
    class BrokenStore(SqliteStore):
        def list_active_sensors(self):  # type: ignore[no-untyped-def]
            raise sqlite3.OperationalError("no such table: sensor_locations")

    broken = BrokenStore(tmp_path / "broken.db")
    with pytest.raises(sqlite3.OperationalError):
        _sync(broken, FakeClient()).run(now=NOW)
