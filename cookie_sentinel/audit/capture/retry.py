"""Shared retry policy with exponential backoff."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule.

    ``max_attempts`` counts every attempt including the first; the delay
    before attempt ``n + 1`` is ``initial_delay_ms * 2 ** (n - 1)``.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds after the given zero-based failed attempt."""
        return self.initial_delay_ms / 1000.0 * (2 ** attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None
) -> T:
    """Run an async operation, retrying failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory
        policy: Attempt budget and backoff schedule
        retry_on: Exception types that trigger a retry
        description: Label used in log messages
        sleep: Sleep function, defaults to asyncio.sleep

    Returns:
        The result of the first successful attempt

    Raises:
        The last exception once the attempt budget is exhausted, or any
        exception not listed in ``retry_on`` immediately.
    """
    sleep = sleep or asyncio.sleep
    attempts = max(policy.max_attempts, 1)

    for attempt in range(attempts):
        try:
            return await operation()
        except retry_on as e:
            if attempt + 1 >= attempts:
                logger.error(f"All {attempts} attempts failed for {description}: {e}")
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed for {description}: {e} "
                f"(retrying in {delay:.1f}s)"
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"No attempts made for {description}")
