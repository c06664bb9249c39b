from __future__ import annotations

from datetime import date
import logging

# FastAPI primitives: the router groups endpoints; `Depends` pulls collaborators off `app.state`.
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from ridecounts.api.schemas import (
    DayStatsOut,
    MonitoringDataOut,
    MonitoringOut,
    WeeklyCountyOut,
    WeeklyOut,
    WeeklySensorOut,
)
from ridecounts.pipeline.health import DayStats, HealthMonitor
from ridecounts.pipeline.rollup import WeeklyRollupAggregator
from ridecounts.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

router = APIRouter()

# Monitoring pollers must always see the current state, never a cached copy.
NO_CACHE = "no-cache, no-store, must-revalidate"


def get_health_monitor(request: Request) -> HealthMonitor:
    return request.app.state.health_monitor  # type: ignore[attr-defined]


def get_store(request: Request) -> SqliteStore:
    return request.app.state.store  # type: ignore[attr-defined]


def _day_out(stats: DayStats) -> DayStatsOut:
    return DayStatsOut(
        date=stats.day,
        record_count=stats.record_count,
        sensor_count=stats.sensor_count,
        earliest_timestamp=stats.earliest,
        latest_timestamp=stats.latest,
    )


@router.get("/monitoring", response_model=MonitoringOut)
def get_monitoring(response: Response, monitor: HealthMonitor = Depends(get_health_monitor)):
    """
    Health check for external monitoring: alert when `is_healthy` is false, or when
    `worker_likely_ran` is false and `data_freshness_hours` exceeds 24.
    """

    try:
        report = monitor.check()
    except Exception as e:
        logger.exception("Monitoring check failed")
        return JSONResponse(
            status_code=500,
            content=MonitoringOut(success=False, error=str(e)).model_dump(mode="json"),
            headers={"Cache-Control": NO_CACHE},
        )

    response.headers["Cache-Control"] = NO_CACHE
    return MonitoringOut(
        success=True,
        data=MonitoringDataOut(
            checked_at=report.checked_at,
            today=_day_out(report.today),
            yesterday=_day_out(report.yesterday),
            is_healthy=report.is_healthy,
            worker_likely_ran=report.worker_likely_ran,
            data_freshness_hours=report.data_freshness_hours,
        ),
    )


@router.get("/weekly/{week_ending}", response_model=WeeklyOut)
def get_weekly(week_ending: date, store: SqliteStore = Depends(get_store)) -> WeeklyOut:
    rows = store.weekly_stats(week_ending)
    if not rows:
        raise HTTPException(status_code=404, detail=f"No weekly stats for week ending {week_ending.isoformat()}")

    aggregator = WeeklyRollupAggregator(store)
    national = aggregator.national_total(week_ending)
    counties = aggregator.county_totals(week_ending)
    return WeeklyOut(
        week_ending=week_ending,
        total_bikes=national["total_bikes"],
        sensor_count=national["sensor_count"],
        avg_daily=national["avg_daily"],
        sensors=[
            WeeklySensorOut(
                segment_id=r.segment_id,
                county=r.county,
                total_bikes=r.total_bikes,
                avg_daily=r.avg_daily,
            )
            for r in rows
        ],
        counties=[
            WeeklyCountyOut(
                county=str(rec["county"]),
                total_bikes=int(rec["total_bikes"]),
                sensor_count=int(rec["sensor_count"]),
                avg_daily=int(rec["avg_daily"]),
            )
            for rec in counties.to_dict(orient="records")
        ],
    )
