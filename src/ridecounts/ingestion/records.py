from __future__ import annotations

from datetime import date, datetime
import re
from typing import Any, Mapping, Optional, Union

from ridecounts.ingestion.report_schema import HourlyReport
from ridecounts.schemas.core import HourlySample, RecordRejection
from ridecounts.utils.dates import as_utc, floor_hour


_PLAIN_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

NormalizeResult = Union[HourlySample, RecordRejection]


def _field(report: HourlyReport | Mapping[str, Any], name: str) -> Any:
    # Archived reports are re-read as plain dicts; live ones arrive as validated models.
    if isinstance(report, Mapping):
        return report.get(name)
    return getattr(report, name, None)


def _count(value: Any) -> int:
    if value is None:
        return 0
    return int(round(float(value)))


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _resolve_hour(report: HourlyReport | Mapping[str, Any]) -> datetime | RecordRejection:
    raw_date = _field(report, "date")
    if raw_date is None or (isinstance(raw_date, str) and not raw_date.strip()):
        return RecordRejection("missing_date", "record has no date")
    if not isinstance(raw_date, str):
        return RecordRejection("malformed_date", f"date is not a string: {raw_date!r}")

    text = raw_date.strip()
    if "T" in text:
        # Full date-time, e.g. "2025-12-01T14:00:00.000Z": truncate to the hour in UTC.
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return RecordRejection("invalid_date", f"unparseable date-time {text!r}")
        return floor_hour(as_utc(parsed))

    if not _PLAIN_DATE_RE.match(text):
        return RecordRejection("malformed_date", f"date {text!r} is not YYYY-MM-DD")
    try:
        day = date.fromisoformat(text)
    except ValueError:
        return RecordRejection("invalid_date", f"date {text!r} is not a calendar date")

    hour = _field(report, "hour")
    if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
        return RecordRejection("invalid_hour", f"hour {hour!r} is not an integer in 0..23")

    return as_utc(datetime(day.year, day.month, day.day, hour))


def normalize_report(report: HourlyReport | Mapping[str, Any], *, segment_id: int) -> NormalizeResult:
    """
    Turn one upstream report into an `HourlySample`, or explain why it cannot be stored.

    Pure: no logging, no I/O. Missing counts become 0 and missing uptime becomes 0.0 (the
    columns are NOT NULL); a missing `v85` stays None.
    """

    hour_ts = _resolve_hour(report)
    if isinstance(hour_ts, RecordRejection):
        return hour_ts

    uptime = _field(report, "uptime")
    return HourlySample(
        segment_id=int(segment_id),
        hour_timestamp=hour_ts,
        bike=_count(_field(report, "bike")),
        car=_count(_field(report, "car")),
        heavy=_count(_field(report, "heavy")),
        pedestrian=_count(_field(report, "pedestrian")),
        v85=_optional_float(_field(report, "v85")),
        uptime=0.0 if uptime is None else float(uptime),
    )
