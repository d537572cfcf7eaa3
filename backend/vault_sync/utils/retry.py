"""Bounded retry helper shared by lock waits and verification loops."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, TypeVar

from vault_sync.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and delay schedule.

    ``exponential`` waits ``base_delay * 2**n``; ``linear`` waits
    ``base_delay * (n + 1)`` where ``n`` is the zero-based retry number.
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    backoff: Literal["exponential", "linear"] = "exponential"
    jitter: float = 0.0
    max_delay: float | None = None

    def delay_for(self, retry_number: int) -> float:
        if self.backoff == "exponential":
            delay = self.base_delay * (2**retry_number)
        else:
            delay = self.base_delay * (retry_number + 1)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay


class RetryExhausted(Exception):
    """Raised when every attempt failed; wraps the last error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted."""
    last_error: BaseException | None = None
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except retry_on as exc:
            last_error = exc
            if attempt == policy.max_attempts - 1:
                break
            delay = policy.delay_for(attempt)
            logger.debug(
                "%s attempt %d failed, retrying in %.2fs: %s",
                description,
                attempt + 1,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    if last_error is None:
        raise ValueError("retry policy allows no attempts")
    raise RetryExhausted(policy.max_attempts, last_error) from last_error


__all__ = ["RetryPolicy", "RetryExhausted", "retry_async"]
