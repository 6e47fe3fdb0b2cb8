"""Call spacing and retry with backoff for provider and GitHub API calls.

One ``RateLimiter`` is created per API name by the orchestrator and handed to
every component that talks to that API, so concurrent units share the same
spacing without any module-level state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses where another attempt cannot succeed.
FATAL_STATUSES = frozenset({400, 401, 403, 404, 422})

_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")


class RateLimiter:
    """Enforce a minimum interval between consecutive calls to one API."""

    def __init__(self, min_interval: float = 1.0, name: str = "", sleep=asyncio.sleep, clock=time.monotonic):
        self.min_interval = min_interval
        self.name = name
        self._sleep = sleep
        self._clock = clock
        self._last_call: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        # Held across the sleep so two waiters cannot both read the same timestamp.
        async with self._lock:
            if self._last_call is not None:
                remaining = self._last_call + self.min_interval - self._clock()
                if remaining > 0:
                    logger.debug("Rate limiting %s: waiting %.2fs", self.name or "api", remaining)
                    await self._sleep(remaining)
            self._last_call = self._clock()


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    rate_limit_factor: int = 3

    @classmethod
    def from_config(cls, config: dict) -> RetryPolicy:
        return cls(
            max_attempts=max(1, int(config.get("max_retries", 3))),
            base_delay=float(config.get("retry_delay", 1.0)),
            max_delay=float(config.get("max_retry_delay", 30.0)),
        )


def error_status(error: BaseException) -> int | None:
    """HTTP status carried by an SDK exception, if any.

    openai/anthropic expose ``status_code``; PyGithub exposes ``status``.
    """
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def is_rate_limit_error(error: BaseException) -> bool:
    if error_status(error) == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def is_fatal_error(error: BaseException) -> bool:
    return error_status(error) in FATAL_STATUSES and not is_rate_limit_error(error)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    limiter: RateLimiter | None = None,
    name: str = "",
    sleep=asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    The wait before attempt ``n + 1`` is ``delay * n``. A rate-limit failure
    first multiplies ``delay`` by ``rate_limit_factor``, capped at
    ``max_delay``. Fatal errors and the last attempt's error are re-raised.
    """
    policy = policy or RetryPolicy()
    label = name or getattr(limiter, "name", "") or "operation"
    delay = policy.base_delay
    last_error: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            if limiter is not None:
                await limiter.wait()
            return await operation()
        except Exception as e:
            last_error = e
            if is_fatal_error(e):
                logger.error("%s failed with a non-retryable error: %s", label, e)
                raise
            if is_rate_limit_error(e):
                delay = min(delay * policy.rate_limit_factor, policy.max_delay)
                logger.warning("%s: rate limit detected, increasing delay to %.1fs", label, delay)
            if attempt < policy.max_attempts:
                wait = delay * attempt
                logger.warning(
                    "%s error (attempt %d/%d): %s. Retrying in %.1fs...",
                    label,
                    attempt,
                    policy.max_attempts,
                    e,
                    wait,
                )
                await sleep(wait)

    logger.error("%s failed after %d attempts: %s", label, policy.max_attempts, last_error)
    assert last_error is not None
    raise last_error
