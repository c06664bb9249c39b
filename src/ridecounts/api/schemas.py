from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field


class DayStatsOut(BaseModel):
    date: dt.date
    record_count: int
    sensor_count: int
    earliest_timestamp: Optional[dt.datetime] = None
    latest_timestamp: Optional[dt.datetime] = None


class MonitoringDataOut(BaseModel):
    checked_at: dt.datetime
    today: DayStatsOut
    yesterday: DayStatsOut
    is_healthy: bool
    worker_likely_ran: bool
    data_freshness_hours: Optional[float] = None


class MonitoringOut(BaseModel):
    success: bool = True
    data: Optional[MonitoringDataOut] = None
    error: Optional[str] = None


class WeeklySensorOut(BaseModel):
    segment_id: int
    county: Optional[str] = None
    total_bikes: int
    avg_daily: int


class WeeklyCountyOut(BaseModel):
    county: str
    total_bikes: int
    sensor_count: int
    avg_daily: int


class WeeklyOut(BaseModel):
    week_ending: dt.date
    total_bikes: int
    sensor_count: int
    avg_daily: int
    sensors: list[WeeklySensorOut] = Field(default_factory=list)
    counties: list[WeeklyCountyOut] = Field(default_factory=list)
