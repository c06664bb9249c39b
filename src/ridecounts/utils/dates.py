from __future__ import annotations

from datetime import date, datetime, timezone


# Upstream request format, e.g. "2024-01-15 14:30:00Z".
API_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%SZ"
# Stored hour key; minutes and seconds are always zero.
HOUR_TIMESTAMP_FORMAT = "%Y-%m-%d %H:00:00Z"
COMPACT_DATE_FORMAT = "%Y%m%d"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # Naive datetimes are treated as UTC; every timestamp the pipeline stores is UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def floor_hour(dt: datetime) -> datetime:
    return as_utc(dt).replace(minute=0, second=0, microsecond=0)


def start_of_day(dt: datetime) -> datetime:
    return as_utc(dt).replace(hour=0, minute=0, second=0, microsecond=0)


def format_api_datetime(dt: datetime) -> str:
    return as_utc(dt).strftime(API_DATETIME_FORMAT)


def format_hour_timestamp(dt: datetime) -> str:
    return as_utc(dt).strftime(HOUR_TIMESTAMP_FORMAT)


def parse_stored_timestamp(value: str) -> datetime:
    """
    Parse a stored `hour_timestamp` ("YYYY-MM-DD HH:MM:SSZ") back into an aware UTC datetime.

    ISO variants with a "T" separator or an explicit offset are accepted as well.
    """

    text = str(value).strip().replace("Z", "+00:00")
    return as_utc(datetime.fromisoformat(text))


def format_compact_date(d: date | datetime) -> str:
    return d.strftime(COMPACT_DATE_FORMAT)


def parse_compact_date(value: str) -> date:
    return datetime.strptime(value, COMPACT_DATE_FORMAT).date()
