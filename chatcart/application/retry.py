"""Bounded retry with exponential backoff for store operations."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from chatcart.domain.exceptions import ConcurrencyConflictError, StoreUnavailableError
from chatcart.infrastructure.config import settings

logger = structlog.get_logger()

T = TypeVar("T")

# Transient failures worth another attempt.
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    ConcurrencyConflictError,
    StoreUnavailableError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a store operation.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for any single delay.
        exponential_base: Growth factor between consecutive delays.
        jitter: Fraction of each delay that is randomized, so callers
            that collided do not retry in lockstep.
    """

    max_attempts: int = 8
    base_delay: float = 0.05
    max_delay: float = 1.0
    exponential_base: float = 2.0
    jitter: float = 0.5

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.store_max_attempts,
            base_delay=settings.store_retry_base_delay,
            max_delay=settings.store_retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based), with jitter applied."""
        delay = min(self.base_delay * self.exponential_base ** (attempt - 1), self.max_delay)
        return delay * (1 - self.jitter * random.random())


async def retry_store_operation(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    name: str,
    retry_on: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
    **log_context: object,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Each attempt calls ``operation`` afresh, so a read-modify-write
    closure re-reads current state on every attempt.

    Args:
        operation: Zero-argument coroutine factory.
        policy: Retry policy.
        name: Operation name for logs.
        retry_on: Exception types that trigger another attempt.
        **log_context: Extra fields for retry log lines.

    Returns:
        Result of the first successful attempt.

    Raises:
        The last retried exception once attempts are exhausted; any
        other exception immediately.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.error(
                    "Store operation failed after retries",
                    operation=name,
                    attempts=attempt,
                    error_kind=getattr(e, "error_kind", type(e).__name__),
                    **log_context,
                )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                "Store operation failed, retrying",
                operation=name,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 3),
                error_kind=getattr(e, "error_kind", type(e).__name__),
                **log_context,
            )
            await asyncio.sleep(delay)
            attempt += 1
