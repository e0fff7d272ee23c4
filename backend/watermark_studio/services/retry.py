from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    delay: float = 2.0
    multiplier: float = 2.0
    classify_errors: bool = True

    def delays(self) -> list[float]:
        return [self.delay * self.multiplier**i for i in range(self.max_retries)]


def is_retryable(exc: BaseException) -> bool:
    return getattr(exc, "retryable", True)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    delay: float = 2.0,
    multiplier: float = 2.0,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` and retry failures with exponential backoff.

    Waits ``delay``, ``delay * multiplier``, ... between attempts, making at
    most ``max_retries + 1`` attempts. The last exception is re-raised as is.
    When ``should_retry`` returns False for an exception it is raised at once.
    """
    retries_left = max_retries
    wait = delay
    while True:
        try:
            return await operation()
        except Exception as exc:
            if retries_left <= 0 or (should_retry is not None and not should_retry(exc)):
                raise
            logger.info("Retrying in %.1fs (%d retries left): %s", wait, retries_left, exc)
            await sleep(wait)
            retries_left -= 1
            wait *= multiplier


async def run_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    return await retry_with_backoff(
        operation,
        max_retries=policy.max_retries,
        delay=policy.delay,
        multiplier=policy.multiplier,
        should_retry=is_retryable if policy.classify_errors else None,
        sleep=sleep,
    )
