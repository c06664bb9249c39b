from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError


class HourlyReport(BaseModel):
    """
    One per-hour record from the upstream `/reports/traffic` endpoint.

    The shape is checked strictly here (types, non-negative counts, uptime in [0, 1]); the
    calendar meaning of `date`/`hour` is checked later, per record, by `normalize_report`, so a
    single bad timestamp drops one row instead of failing the whole response.
    """

    # Upstream adds fields over time (instance_id, car_speed_hist, ...); keep them for the raw archive.
    model_config = ConfigDict(extra="allow")

    date: StrictStr
    hour: Optional[int] = None
    uptime: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    heavy: Optional[float] = Field(default=None, ge=0.0)
    car: Optional[float] = Field(default=None, ge=0.0)
    bike: Optional[float] = Field(default=None, ge=0.0)
    pedestrian: Optional[float] = Field(default=None, ge=0.0)
    v85: Optional[float] = None


class TrafficReportResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    report: Optional[list[HourlyReport]] = None


def parse_traffic_response(payload: Any) -> list[HourlyReport]:
    """
    Validate a decoded JSON body and return its reports.

    Raises `pydantic.ValidationError` on any shape violation; a missing or null `report` is the
    upstream's way of saying "no rows" and yields an empty list.
    """

    parsed = TrafficReportResponse.model_validate(payload)
    return list(parsed.report or [])


__all__ = ["HourlyReport", "TrafficReportResponse", "ValidationError", "parse_traffic_response"]
