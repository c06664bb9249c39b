from __future__ import annotations

from dataclasses import dataclass
import functools
import logging
import random
import time
from typing import Any, Callable, Protocol, TypeVar

import requests

from ridecounts.config.models import RetrySettings


logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_STATUSES: tuple[int, ...] = (408, 429, 500, 502, 503, 504)


class _HasStatus(Protocol):
    status_code: int


R = TypeVar("R", bound=_HasStatus)


class RetryExhausted(RuntimeError):
    """
    Raised when every allowed attempt failed with a transport error.

    `attempts` is the total number of calls made (retries + 1); `last_error` is the final
    underlying exception so callers can log what actually went wrong.
    """

    def __init__(self, message: str, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay_s: float = 2.0
    max_delay_s: float = 10.0
    retryable_statuses: tuple[int, ...] = DEFAULT_RETRYABLE_STATUSES
    jitter_ratio: float = 0.25

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @staticmethod
    def from_settings(settings: RetrySettings) -> "RetryPolicy":
        return RetryPolicy(
            max_retries=int(settings.max_retries),
            initial_delay_s=settings.initial_delay_ms / 1000.0,
            max_delay_s=settings.max_delay_ms / 1000.0,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    *,
    rand: Callable[[float, float], float] = random.uniform,
) -> float:
    """Exponential delay for zero-based `attempt`, capped at `max_delay_s`, with uniform jitter."""

    capped = min(policy.initial_delay_s * (2 ** attempt), policy.max_delay_s)
    jitter = capped * rand(-policy.jitter_ratio, policy.jitter_ratio)
    return max(capped + jitter, 0.0)


def fetch_with_retry(
    call: Callable[[], R],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    rand: Callable[[float, float], float] = random.uniform,
) -> R:
    attempt = 0
    while True:
        is_last = attempt >= policy.max_attempts - 1
        try:
            response = call()
        except requests.RequestException as e:
            if is_last:
                raise RetryExhausted(
                    f"Failed after {attempt + 1} attempts: {e}",
                    attempts=attempt + 1,
                    last_error=e,
                ) from e
            delay = backoff_delay(attempt, policy, rand=rand)
            logger.warning(
                "Network error on attempt %s/%s: %s. Retrying in %.2fs",
                attempt + 1,
                policy.max_attempts,
                e,
                delay,
            )
            sleep(delay)
            attempt += 1
            continue

        if response.status_code in policy.retryable_statuses and not is_last:
            delay = backoff_delay(attempt, policy, rand=rand)
            logger.warning(
                "Retryable status %s on attempt %s/%s. Retrying in %.2fs",
                response.status_code,
                attempt + 1,
                policy.max_attempts,
                delay,
            )
            sleep(delay)
            attempt += 1
            continue

        # Success, a non-retryable error, or the last retryable response: the caller classifies it.
        return response


def with_retry(
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[..., R]], Callable[..., R]]:
    """
    Decorator form of `fetch_with_retry` for any outbound call returning a response object.

        @with_retry(RetryPolicy(max_retries=2))
        def post_report(session, url, body): ...
    """

    def decorate(fn: Callable[..., R]) -> Callable[..., R]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> R:
            return fetch_with_retry(lambda: fn(*args, **kwargs), policy, sleep=sleep)

        return wrapper

    return decorate
