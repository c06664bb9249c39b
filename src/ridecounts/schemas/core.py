from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal, Optional

from ridecounts.utils.dates import as_utc, format_api_datetime, format_hour_timestamp


SensorStatus = Literal["active", "inactive"]
RejectionReason = Literal["missing_date", "invalid_date", "malformed_date", "invalid_hour"]


@dataclass(frozen=True)
class SensorLocation:
    segment_id: int
    timezone: str
    status: str = "active"
    county: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status != "inactive"


@dataclass(frozen=True)
class HourlySample:
    segment_id: int
    hour_timestamp: datetime
    bike: int = 0
    car: int = 0
    heavy: int = 0
    pedestrian: int = 0
    v85: Optional[float] = None
    uptime: float = 0.0

    @property
    def hour_key(self) -> str:
        return format_hour_timestamp(self.hour_timestamp)

    def as_row(self) -> tuple[object, ...]:
        # Column order matches `SqliteStore.UPSERT_HOURLY_SQL`.
        return (
            self.segment_id,
            self.hour_key,
            self.bike,
            self.car,
            self.heavy,
            self.pedestrian,
            self.v85,
            self.uptime,
        )


@dataclass(frozen=True)
class RecordRejection:
    reason: RejectionReason
    detail: str


@dataclass(frozen=True)
class WeeklyRollup:
    week_ending: date
    segment_id: int
    county: Optional[str]
    total_bikes: int
    avg_daily: int


@dataclass(frozen=True)
class FetchWindow:
    """Inclusive-at-the-hour time range for one upstream request (UTC, `start <= end`)."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.start > self.end:
            raise ValueError(f"FetchWindow start {self.start.isoformat()} is after end {self.end.isoformat()}")

    @property
    def time_start(self) -> str:
        return format_api_datetime(self.start)

    @property
    def time_end(self) -> str:
        return format_api_datetime(self.end)

    def __str__(self) -> str:
        return f"[{self.time_start} .. {self.time_end}]"


@dataclass
class RunSummary:
    kind: str
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    rows_inserted: int = 0
    pruned: int = 0
    duration_s: float = 0.0
    processed_ids: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.updated + self.skipped + self.errored

    def as_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "updated": self.updated,
            "skipped": self.skipped,
            "errored": self.errored,
            "rows_inserted": self.rows_inserted,
            "pruned": self.pruned,
            "duration_s": round(self.duration_s, 3),
            "processed_ids": list(self.processed_ids),
            "errors": {str(k): v for k, v in self.errors.items()},
        }
