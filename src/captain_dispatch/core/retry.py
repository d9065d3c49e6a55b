"""Exponential backoff for transient failures.

One RetryConfig drives three callers: the OSRM client (sync), the API
maintenance loop (async) and the persisted dispatch task queue, which
stores its attempt count and only asks the config for the next delay.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .exceptions import TransientError

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (TransientError,)
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds after the given zero-based attempt."""
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)

    def exhausted(self, attempts_made: int) -> bool:
        return attempts_made >= self.max_attempts


def _next_delay(
    config: RetryConfig, attempts_made: int, operation_name: str, error: Exception
) -> float | None:
    """Delay before the next attempt, or None once the budget is spent."""
    if config.exhausted(attempts_made):
        logger.error(f"{operation_name} failed after {attempts_made} attempts: {error}")
        return None
    delay = config.delay_for(attempts_made - 1)
    logger.warning(
        f"{operation_name} failed (attempt {attempts_made}/{config.max_attempts}), "
        f"retrying in {delay:.1f}s: {error}"
    )
    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    on_retry: Callable[[Exception, int], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await operation, retrying retryable errors; the last error propagates."""
    config = config or RetryConfig()
    attempts = 0
    while True:
        try:
            return await operation()
        except config.retryable_exceptions as e:
            attempts += 1
            delay = _next_delay(config, attempts, operation_name, e)
            if delay is None:
                raise
            if on_retry:
                on_retry(e, attempts - 1)
            await sleep(delay)


def with_retry_sync(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    config = config or RetryConfig()
    attempts = 0
    while True:
        try:
            return operation()
        except config.retryable_exceptions as e:
            attempts += 1
            delay = _next_delay(config, attempts, operation_name, e)
            if delay is None:
                raise
            sleep(delay)
