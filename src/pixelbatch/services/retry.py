"""Bounded local retry with exponential backoff for generation calls.

This backoff is independent of the inter-item rate limiter: it only spaces
out repeated attempts for the same item.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pixelbatch.services.generation_client import GenerationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 2000
    max_delay_ms: int = 30000


@dataclass
class RetryResult(Generic[T]):
    success: bool
    value: T | None = None
    error: GenerationError | None = None
    attempts_made: int = 0
    was_non_retryable: bool = False

    @property
    def retry_count(self) -> int:
        return max(0, self.attempts_made - 1)


def calculate_backoff_delay(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    rng: random.Random | None = None,
) -> float:
    """Exponential backoff with +/-25% jitter, capped at ``max_delay_ms``.

    ``attempt`` is zero-based: the delay after the first failed attempt uses 0.
    """
    source = rng or random
    exponential = base_delay_ms * (2 ** attempt)
    jittered = exponential * (0.75 + source.random() * 0.5)
    return min(jittered, max_delay_ms)


def worst_case_duration_seconds(config: RetryConfig, attempt_timeout_seconds: float) -> float:
    """Upper bound for one item: every attempt times out and every backoff draws +25%."""
    backoff_ms = sum(
        min(config.base_delay_ms * (2 ** attempt) * 1.25, config.max_delay_ms)
        for attempt in range(config.max_retries)
    )
    return (config.max_retries + 1) * attempt_timeout_seconds + backoff_ms / 1000


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: random.Random | None = None,
    label: str = "generation",
) -> RetryResult[T]:
    """Call ``fn`` until it succeeds, fails terminally, or retries run out.

    ``fn`` signals failure by raising :class:`GenerationError`; any other
    exception propagates.
    """
    last_error: GenerationError | None = None
    total_attempts = config.max_retries + 1

    for attempt in range(total_attempts):
        try:
            value = await fn()
            return RetryResult(success=True, value=value, attempts_made=attempt + 1)
        except GenerationError as exc:
            last_error = exc
            if not exc.retryable:
                logger.info(
                    "%s: non-retryable failure (%s), not retrying", label, exc.reason
                )
                return RetryResult(
                    success=False,
                    error=exc,
                    attempts_made=attempt + 1,
                    was_non_retryable=True,
                )

        if attempt < config.max_retries:
            delay_ms = calculate_backoff_delay(attempt, config.base_delay_ms, config.max_delay_ms, rng)
            logger.info(
                "%s: attempt %d/%d failed (%s), retrying in %dms",
                label, attempt + 1, total_attempts, last_error.reason, round(delay_ms),
            )
            await sleep(delay_ms / 1000)

    logger.info("%s: all %d attempts failed", label, total_attempts)
    return RetryResult(success=False, error=last_error, attempts_made=total_attempts)
