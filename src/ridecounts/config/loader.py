from __future__ import annotations

from datetime import date
import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from ridecounts.config.models import (
    AppConfig,
    AppSettings,
    BackfillSettings,
    LoggingSettings,
    RetentionSettings,
    RetrySettings,
    StorageSettings,
    SyncSettings,
    TrafficApiSettings,
)


DEFAULT_BASE_URL = "https://telraam-api.net/v1"


def _as_path(value: str, *, base_dir: Path) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base_dir / candidate)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)


def _parse_date(value: Any, *, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValueError(f"Invalid {field}: {value!r} (expected YYYY-MM-DD)") from e


def load_config(path: Optional[str | Path] = None, *, base_dir: Optional[Path] = None) -> AppConfig:
    """
    Load typed pipeline config from JSON, then apply environment overrides.

    - Path resolution is relative to `base_dir` (defaults to current working directory).
    - `.env` is loaded first, without overriding variables already set in the process.
    - A missing config file is not an error: every section has defaults so the scheduled
      jobs can run from environment variables alone.
    """

    load_dotenv(override=False)

    config_path = Path(path or os.getenv("RIDECOUNTS_CONFIG_PATH", "config/default.json")).resolve()
    base_dir = (base_dir or Path.cwd()).resolve()

    raw: Mapping[str, Any] = {}
    if config_path.exists():
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    elif path is not None:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    app_raw: Mapping[str, Any] = raw.get("app", {})
    app = AppSettings(name=str(app_raw.get("name", "RideCounts")))

    api_raw: Mapping[str, Any] = raw.get("api", {})
    base_url = os.getenv("TRAFFIC_API_BASE_URL") or api_raw.get("base_url") or DEFAULT_BASE_URL
    api = TrafficApiSettings(
        base_url=str(base_url),
        timeout_s=float(api_raw.get("timeout_s", 30.0)),
        user_agent=str(api_raw.get("user_agent", "ridecounts/0.1.0")),
    )

    retry_raw: Mapping[str, Any] = raw.get("retry", {})
    retry = RetrySettings(
        max_retries=_env_int("RETRY_MAX_RETRIES", int(retry_raw.get("max_retries", 3))),
        initial_delay_ms=_env_int("RETRY_INITIAL_DELAY_MS", int(retry_raw.get("initial_delay_ms", 2000))),
        max_delay_ms=_env_int("RETRY_MAX_DELAY_MS", int(retry_raw.get("max_delay_ms", 10000))),
    )
    if retry.max_retries < 0:
        raise ValueError(f"retry.max_retries must be >= 0, got {retry.max_retries}")

    sync_raw: Mapping[str, Any] = raw.get("sync", {})
    sync = SyncSettings(
        request_delay_s=_env_float("SYNC_REQUEST_DELAY_S", float(sync_raw.get("request_delay_s", 5.0))),
        initial_lookback_hours=int(sync_raw.get("initial_lookback_hours", 24)),
    )

    backfill_raw: Mapping[str, Any] = raw.get("backfill", {})
    backfill = BackfillSettings(
        days=_env_int("BACKFILL_DAYS", int(backfill_raw.get("days", 90))),
        batch_size=_env_int("BATCH_SIZE", int(backfill_raw.get("batch_size", 10))),
        request_delay_s=_env_float("BACKFILL_REQUEST_DELAY_S", float(backfill_raw.get("request_delay_s", 10.0))),
        earliest_date=_parse_date(
            os.getenv("BACKFILL_EARLIEST_DATE") or backfill_raw.get("earliest_date"),
            field="backfill.earliest_date",
        ),
    )
    if backfill.days < 1:
        raise ValueError(f"backfill.days must be >= 1, got {backfill.days}")
    if backfill.batch_size < 1:
        raise ValueError(f"backfill.batch_size must be >= 1, got {backfill.batch_size}")

    retention_raw: Mapping[str, Any] = raw.get("retention", {})
    retention = RetentionSettings(days=_env_int("RETENTION_DAYS", int(retention_raw.get("days", 7))))

    storage_raw: Mapping[str, Any] = raw.get("storage", {})
    storage = StorageSettings(
        db_path=_as_path(
            os.getenv("RIDECOUNTS_DB_PATH") or str(storage_raw.get("db_path", "data/ridecounts.db")),
            base_dir=base_dir,
        ),
        archive_dir=_as_path(
            os.getenv("RIDECOUNTS_ARCHIVE_DIR") or str(storage_raw.get("archive_dir", "data/archive")),
            base_dir=base_dir,
        ),
    )

    logging_raw: Mapping[str, Any] = raw.get("logging", {})
    file_value = logging_raw.get("file")
    log_file = None if not file_value else _as_path(str(file_value), base_dir=base_dir)
    logging_settings = LoggingSettings(
        level=str(os.getenv("RIDECOUNTS_LOG_LEVEL") or logging_raw.get("level", "INFO")),
        format=str(logging_raw.get("format", "%(asctime)s %(levelname)s %(name)s - %(message)s")),
        file=log_file,
    )

    return AppConfig(
        app=app,
        api=api,
        retry=retry,
        sync=sync,
        backfill=backfill,
        retention=retention,
        storage=storage,
        logging=logging_settings,
    )
