from __future__ import annotations

from typing import Optional

from ridecounts.config.models import AppConfig
from ridecounts.ingestion.archive import RawReportArchive
from ridecounts.ingestion.retry import RetryPolicy
from ridecounts.ingestion.traffic_client import ApiCredentials, TrafficApiClient
from ridecounts.ingestion.writer import HourlyWriter
from ridecounts.pipeline.backfill import BackfillPlanner
from ridecounts.pipeline.health import HealthMonitor
from ridecounts.pipeline.rollup import WeeklyRollupAggregator
from ridecounts.pipeline.sync import WatermarkSync
from ridecounts.storage.sqlite_store import SqliteStore


# Scheduled jobs build their collaborators from config here, so scripts stay thin.


def build_store(config: AppConfig) -> SqliteStore:
    store = SqliteStore(config.storage.db_path)
    store.ensure_schema()
    return store


def build_client(config: AppConfig, credentials: Optional[ApiCredentials] = None) -> TrafficApiClient:
    creds = credentials or ApiCredentials.from_env()
    return TrafficApiClient(
        api_key=creds.api_key,
        base_url=config.api.base_url,
        retry_policy=RetryPolicy.from_settings(config.retry),
        timeout_s=config.api.timeout_s,
        user_agent=config.api.user_agent,
    )


def build_sync(config: AppConfig, *, store: SqliteStore, client: TrafficApiClient) -> WatermarkSync:
    return WatermarkSync(
        store=store,
        client=client,
        writer=HourlyWriter(store),
        request_delay_s=config.sync.request_delay_s,
        initial_lookback_hours=config.sync.initial_lookback_hours,
        retention_days=config.retention.days,
    )


def build_backfill(config: AppConfig, *, store: SqliteStore, client: TrafficApiClient) -> BackfillPlanner:
    return BackfillPlanner(
        store=store,
        client=client,
        writer=HourlyWriter(store),
        archive=RawReportArchive(config.storage.archive_dir),
        days=config.backfill.days,
        batch_size=config.backfill.batch_size,
        request_delay_s=config.backfill.request_delay_s,
        earliest_date=config.backfill.earliest_date,
    )


def build_rollup(store: SqliteStore) -> WeeklyRollupAggregator:
    return WeeklyRollupAggregator(store)


def build_health(store: SqliteStore) -> HealthMonitor:
    return HealthMonitor(store)
