from __future__ import annotations

# `dataclass` keeps the credentials holder small and immutable.
from dataclasses import dataclass
# `json` is used only to build truncated previews of bad payloads for error messages.
import json
# `logging` reports request windows and failures without leaking the API key.
import logging
# `os` reads the API key from the environment.
import os
# `time.sleep` is the default backoff sleeper; tests inject a no-op.
import time
# Typing helpers keep the injected session and callables explicit.
from typing import Any, Callable, Optional

# `requests` performs the HTTP calls; retries are layered on top by `with_retry`.
import requests

from ridecounts.ingestion.report_schema import HourlyReport, ValidationError, parse_traffic_response
from ridecounts.ingestion.retry import RetryExhausted, RetryPolicy, with_retry
from ridecounts.schemas.core import FetchWindow


logger = logging.getLogger(__name__)

TRAFFIC_REPORT_PATH = "reports/traffic"


# Base class for classified HTTP failures from the traffic endpoint.
class TrafficApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class TrafficRateLimitError(TrafficApiError):
    """
    Raised on 429 once retries are used up.

    Kept separate so schedulers can back off for longer than the per-request retry delay.
    `retry_after_s` is best-effort parsed from the `Retry-After` header.
    """

    def __init__(self, message: str, *, retry_after_s: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after_s = retry_after_s


class TrafficClientError(TrafficApiError):
    pass


class TrafficServerError(TrafficApiError):
    pass


# A 2xx response whose body is not the expected report shape. Never retried.
class InvalidResponse(RuntimeError):
    pass


@dataclass(frozen=True)
class ApiCredentials:
    api_key: str

    @staticmethod
    def from_env(name: str = "API_KEY") -> "ApiCredentials":
        api_key = (os.getenv(name) or "").strip()
        # Fail before touching the database or the network.
        if not api_key:
            raise ValueError(f"Missing env var: {name}")
        return ApiCredentials(api_key=api_key)


def _parse_retry_after(resp: requests.Response) -> float | None:
    raw = resp.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


class TrafficApiClient:
    """
    Client for the upstream per-hour traffic report endpoint.

    - One POST per (sensor, window); the session is reused across sensors for keep-alive.
    - Transient failures (network errors, 408/429/5xx) are retried by the retry policy.
    - Everything that comes back is classified into a typed exception or a validated list.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_s: float = 30.0,
        user_agent: str = "ridecounts/0.1.0",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required")
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._retry_policy = retry_policy or RetryPolicy()
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent})
        # Wrap the raw POST once so every call shares the same retry policy.
        self._post = with_retry(self._retry_policy, sleep=sleep)(self._session.post)

    @property
    def url(self) -> str:
        return f"{self._base_url}/{TRAFFIC_REPORT_PATH}"

    def build_body(self, sensor_id: int | str, window: FetchWindow) -> dict[str, str]:
        return {
            "level": "segments",
            "format": "per-hour",
            "id": str(sensor_id),
            "time_start": window.time_start,
            "time_end": window.time_end,
        }

    def fetch_hourly(self, sensor_id: int | str, window: FetchWindow) -> list[HourlyReport]:
        body = self.build_body(sensor_id, window)
        logger.debug("Fetching segment %s from %s to %s", sensor_id, body["time_start"], body["time_end"])

        try:
            resp = self._post(
                self.url,
                json=body,
                headers={"X-Api-Key": self._api_key, "Content-Type": "application/json"},
                timeout=self._timeout_s,
            )
        except RetryExhausted as e:
            logger.error(
                "Failed to fetch segment %s after %s attempts. Last error: %s",
                sensor_id,
                e.attempts,
                e.last_error,
            )
            raise

        self._raise_for_status(resp, sensor_id=sensor_id)

        try:
            data = resp.json()
        except ValueError as e:
            raise InvalidResponse(f"Non-JSON response for segment {sensor_id}: {resp.text[:200]}") from e

        try:
            return parse_traffic_response(data)
        except ValidationError as e:
            preview = json.dumps(data, default=str)[:200]
            raise InvalidResponse(
                f"Invalid API response structure for segment {sensor_id}: {e.error_count()} error(s); "
                f"first={e.errors()[0].get('msg') if e.errors() else None}; body={preview}"
            ) from e

    @staticmethod
    def _raise_for_status(resp: requests.Response, *, sensor_id: Any) -> None:
        status = resp.status_code
        if status < 400:
            return
        if status == 429:
            raise TrafficRateLimitError(
                f"Rate limited by traffic API for segment {sensor_id}",
                retry_after_s=_parse_retry_after(resp),
            )
        if status < 500:
            raise TrafficClientError(
                f"Traffic API client error for segment {sensor_id}: {status} {resp.text[:500]}",
                status_code=status,
            )
        raise TrafficServerError(
            f"Traffic API server error for segment {sensor_id}: {status} {resp.text[:500]}",
            status_code=status,
        )

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "TrafficApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def fetch_hourly(
    api_key: str,
    sensor_id: int | str,
    window: FetchWindow,
    *,
    base_url: str = "https://telraam-api.net/v1",
    retry_policy: Optional[RetryPolicy] = None,
) -> list[HourlyReport]:
    """One-shot helper for ad-hoc scripts; pipelines should share a `TrafficApiClient`."""

    with TrafficApiClient(api_key=api_key, base_url=base_url, retry_policy=retry_policy) as client:
        return client.fetch_hourly(sensor_id, window)
