from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
import logging
from pathlib import Path
import sqlite3
from typing import Iterable, Iterator, Optional, Sequence

import pandas as pd

from ridecounts.schemas.core import HourlySample, SensorLocation, WeeklyRollup
from ridecounts.utils.dates import format_api_datetime, parse_stored_timestamp


logger = logging.getLogger(__name__)

# Hard ceiling on statements per bulk call; the writer chunks to this size.
MAX_STATEMENTS_PER_BATCH = 50


class StorageWriteError(RuntimeError):
    pass


SCHEMA_SQL = (
    """
    CREATE TABLE IF NOT EXISTS sensor_locations (
      segment_id INTEGER PRIMARY KEY,
      timezone TEXT NOT NULL DEFAULT 'UTC',
      status TEXT NOT NULL DEFAULT 'active',
      county TEXT,
      country TEXT,
      city_town TEXT,
      locality TEXT,
      eircode TEXT,
      latitude REAL,
      longitude REAL,
      location_name TEXT,
      updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sensor_hourly_data (
      segment_id INTEGER NOT NULL,
      hour_timestamp TEXT NOT NULL,
      bike INTEGER NOT NULL DEFAULT 0,
      car INTEGER NOT NULL DEFAULT 0,
      heavy INTEGER NOT NULL DEFAULT 0,
      pedestrian INTEGER NOT NULL DEFAULT 0,
      v85 REAL,
      uptime REAL NOT NULL DEFAULT 0,
      PRIMARY KEY (segment_id, hour_timestamp)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_hourly_hour_timestamp ON sensor_hourly_data(hour_timestamp)",
    """
    CREATE TABLE IF NOT EXISTS sensor_weekly_stats (
      week_ending TEXT NOT NULL,
      segment_id INTEGER NOT NULL,
      county TEXT,
      total_bikes INTEGER NOT NULL DEFAULT 0,
      avg_daily INTEGER NOT NULL DEFAULT 0,
      created_at TEXT,
      updated_at TEXT,
      PRIMARY KEY (week_ending, segment_id)
    )
    """,
)

SENSOR_COLUMNS = (
    "segment_id",
    "timezone",
    "status",
    "county",
    "country",
    "city_town",
    "locality",
    "eircode",
    "latitude",
    "longitude",
)

# Explicit NULLs bypass column defaults, so fill the NOT NULL columns before binding.
SENSOR_DEFAULTS: dict[str, object] = {"timezone": "UTC", "status": "active"}


class SqliteStore:
    """
    Time-series store for hourly sensor samples and weekly rollups.

    A short-lived connection is opened per operation, so independently scheduled runs (sync,
    backfill, rollup) can share one database file; `busy_timeout_s` makes a writer wait for a
    concurrent one instead of failing immediately.
    """

    UPSERT_HOURLY_SQL = """
        INSERT INTO sensor_hourly_data (
          segment_id, hour_timestamp, bike, car, heavy, pedestrian, v85, uptime
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (segment_id, hour_timestamp) DO UPDATE SET
          bike = excluded.bike,
          car = excluded.car,
          heavy = excluded.heavy,
          pedestrian = excluded.pedestrian,
          v85 = excluded.v85,
          uptime = excluded.uptime
    """

    def __init__(self, db_path: Path | str, *, busy_timeout_s: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout_s = float(busy_timeout_s)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout_s)
        try:
            yield conn
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self.connect() as conn:
            for stmt in SCHEMA_SQL:
                conn.execute(stmt)
            conn.commit()

    # --- sensor metadata (read-mostly; owned by the metadata collaborator) ---

    def list_active_sensors(self) -> list[SensorLocation]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT segment_id, timezone, status, county FROM sensor_locations "
                "WHERE status != 'inactive' ORDER BY segment_id ASC"
            ).fetchall()
        return [
            SensorLocation(segment_id=int(r[0]), timezone=str(r[1]), status=str(r[2]), county=r[3])
            for r in rows
        ]

    def upsert_sensor_locations(self, rows: Iterable[dict[str, object]]) -> int:
        cols = ", ".join(SENSOR_COLUMNS)
        marks = ", ".join(["?"] * len(SENSOR_COLUMNS))
        updates = ", ".join(f"{c} = excluded.{c}" for c in SENSOR_COLUMNS[1:])
        sql = (
            f"INSERT INTO sensor_locations ({cols}, updated_at) VALUES ({marks}, datetime('now')) "
            f"ON CONFLICT (segment_id) DO UPDATE SET {updates}, updated_at = datetime('now')"
        )
        params = [
            tuple(row.get(c) if row.get(c) is not None else SENSOR_DEFAULTS.get(c) for c in SENSOR_COLUMNS)
            for row in rows
        ]
        if not params:
            return 0
        with self.connect() as conn:
            with conn:
                conn.executemany(sql, params)
        return len(params)

    # --- hourly facts ---

    def latest_hour(self, segment_id: int) -> Optional[datetime]:
        return self._hour_extreme("MAX", segment_id)

    def oldest_hour(self, segment_id: int) -> Optional[datetime]:
        return self._hour_extreme("MIN", segment_id)

    def _hour_extreme(self, fn: str, segment_id: int) -> Optional[datetime]:
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT {fn}(hour_timestamp) FROM sensor_hourly_data WHERE segment_id = ?",
                (int(segment_id),),
            ).fetchone()
        if not row or row[0] is None:
            return None
        return parse_stored_timestamp(row[0])

    def oldest_hours(self) -> dict[int, Optional[datetime]]:
        """Oldest stored hour per active sensor (None when the sensor has no rows yet)."""

        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT s.segment_id, MIN(h.hour_timestamp)
                FROM sensor_locations s
                LEFT JOIN sensor_hourly_data h ON h.segment_id = s.segment_id
                WHERE s.status != 'inactive'
                GROUP BY s.segment_id
                """
            ).fetchall()
        return {int(r[0]): (None if r[1] is None else parse_stored_timestamp(r[1])) for r in rows}

    def upsert_hourly(self, samples: Sequence[HourlySample]) -> int:
        """
        Upsert one chunk in a single transaction: either every row of the chunk lands or none.
        """

        if not samples:
            return 0
        if len(samples) > MAX_STATEMENTS_PER_BATCH:
            raise ValueError(f"Chunk of {len(samples)} exceeds statement limit {MAX_STATEMENTS_PER_BATCH}")
        try:
            with self.connect() as conn:
                with conn:
                    conn.executemany(self.UPSERT_HOURLY_SQL, [s.as_row() for s in samples])
        except sqlite3.Error as e:
            raise StorageWriteError(f"Upsert of {len(samples)} hourly rows failed: {e}") from e
        return len(samples)

    def delete_hourly_before(self, cutoff: datetime) -> int:
        with self.connect() as conn:
            with conn:
                cur = conn.execute(
                    "DELETE FROM sensor_hourly_data WHERE hour_timestamp < ?",
                    (format_api_datetime(cutoff),),
                )
                return int(cur.rowcount or 0)

    def hourly_frame(self, segment_id: Optional[int] = None) -> pd.DataFrame:
        sql = "SELECT * FROM sensor_hourly_data"
        params: list[object] = []
        if segment_id is not None:
            sql += " WHERE segment_id = ?"
            params.append(int(segment_id))
        sql += " ORDER BY segment_id, hour_timestamp"
        with self.connect() as conn:
            return pd.read_sql_query(sql, conn, params=params)

    def day_stats(self, start: datetime, end: datetime) -> dict[str, object]:
        """Row count, distinct sensors and timestamp range for `start <= hour_timestamp <= end`."""

        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*), COUNT(DISTINCT segment_id), MIN(hour_timestamp), MAX(hour_timestamp)
                FROM sensor_hourly_data
                WHERE hour_timestamp >= ? AND hour_timestamp <= ?
                """,
                (format_api_datetime(start), format_api_datetime(end)),
            ).fetchone()
        return {
            "record_count": int(row[0] or 0),
            "sensor_count": int(row[1] or 0),
            "earliest": None if row[2] is None else parse_stored_timestamp(row[2]),
            "latest": None if row[3] is None else parse_stored_timestamp(row[3]),
        }

    # --- weekly rollups ---

    def replace_weekly_stats(self, week_ending: date, start: datetime, end: datetime) -> int:
        """
        Delete then re-insert the rollup rows for `week_ending` in one transaction.
        """

        key = week_ending.isoformat()
        with self.connect() as conn:
            with conn:
                conn.execute("DELETE FROM sensor_weekly_stats WHERE week_ending = ?", (key,))
                cur = conn.execute(
                    """
                    INSERT INTO sensor_weekly_stats
                      (week_ending, segment_id, county, total_bikes, avg_daily, created_at, updated_at)
                    SELECT
                      ?,
                      h.segment_id,
                      s.county,
                      COALESCE(SUM(h.bike), 0),
                      COALESCE(CAST(ROUND(SUM(h.bike) * 1.0 / 7) AS INTEGER), 0),
                      datetime('now'),
                      datetime('now')
                    FROM sensor_hourly_data h
                    INNER JOIN sensor_locations s ON h.segment_id = s.segment_id
                    WHERE h.hour_timestamp >= ? AND h.hour_timestamp <= ?
                    GROUP BY h.segment_id, s.county
                    """,
                    (key, format_api_datetime(start), format_api_datetime(end)),
                )
                return int(cur.rowcount or 0)

    def weekly_stats(self, week_ending: date) -> list[WeeklyRollup]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT week_ending, segment_id, county, total_bikes, avg_daily FROM sensor_weekly_stats "
                "WHERE week_ending = ? ORDER BY segment_id",
                (week_ending.isoformat(),),
            ).fetchall()
        return [
            WeeklyRollup(
                week_ending=date.fromisoformat(r[0]),
                segment_id=int(r[1]),
                county=r[2],
                total_bikes=int(r[3]),
                avg_daily=int(r[4]),
            )
            for r in rows
        ]

    def weekly_frame(self, week_ending: date) -> pd.DataFrame:
        with self.connect() as conn:
            return pd.read_sql_query(
                "SELECT week_ending, segment_id, county, total_bikes, avg_daily "
                "FROM sensor_weekly_stats WHERE week_ending = ?",
                conn,
                params=[week_ending.isoformat()],
            )
