from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class AppSettings:
    name: str = "RideCounts"


@dataclass(frozen=True)
class TrafficApiSettings:
    base_url: str
    timeout_s: float = 30.0
    user_agent: str = "ridecounts/0.1.0"


@dataclass(frozen=True)
class RetrySettings:
    max_retries: int = 3
    initial_delay_ms: int = 2000
    max_delay_ms: int = 10000


@dataclass(frozen=True)
class SyncSettings:
    request_delay_s: float = 5.0
    initial_lookback_hours: int = 24


@dataclass(frozen=True)
class BackfillSettings:
    days: int = 90
    batch_size: int = 10
    request_delay_s: float = 10.0
    earliest_date: Optional[date] = None


@dataclass(frozen=True)
class RetentionSettings:
    days: int = 7


@dataclass(frozen=True)
class StorageSettings:
    db_path: Path
    archive_dir: Path


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str
    file: Optional[Path] = None


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    api: TrafficApiSettings
    retry: RetrySettings
    sync: SyncSettings
    backfill: BackfillSettings
    retention: RetentionSettings
    storage: StorageSettings
    logging: LoggingSettings
