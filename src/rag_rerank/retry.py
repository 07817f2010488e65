from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from .errors import ErrorClassification, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 10000.0
    jitter: bool = True


@dataclass
class RetryOutcome(Generic[T]):
    """Typed result of a retried operation: either a value or a classified error."""

    value: T | None = None
    error: BaseException | None = None
    classification: ErrorClassification | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def compute_backoff_delay(
    attempt: int, policy: RetryPolicy, rand: Callable[[], float] = random.random
) -> float:
    """Return the delay in milliseconds before retry number ``attempt + 1``.

    The delay doubles per attempt, is capped at ``max_delay_ms``, and when
    jitter is enabled is scaled by a uniform factor in [0.5, 1.0].
    """
    delay = min(policy.base_delay_ms * (2**attempt), policy.max_delay_ms)
    if policy.jitter:
        delay *= 0.5 + rand() * 0.5
    return delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await ``operation`` up to ``max_retries + 1`` times, re-raising the last error.

    Non-retryable failures (per :func:`classify_error`) are re-raised
    immediately without sleeping.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_retries or not classify_error(exc).retryable:
                raise
            delay = compute_backoff_delay(attempt, policy)
            logger.info(
                "Retry attempt %d/%d after %.0fms delay", attempt + 1, policy.max_retries, delay
            )
            await sleep(delay / 1000.0)
            attempt += 1


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
) -> RetryOutcome[T]:
    """Run :func:`retry_with_backoff` and report the result as a :class:`RetryOutcome`."""
    attempts = 0

    async def _counted() -> T:
        nonlocal attempts
        attempts += 1
        return await operation()

    try:
        value = await retry_with_backoff(_counted, policy, sleep)
    except Exception as exc:
        return RetryOutcome(error=exc, classification=classify_error(exc), attempts=attempts)
    return RetryOutcome(value=value, attempts=attempts)
