"""
Bounded exponential backoff for readiness waits
"""
import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from snapfest.core.logging_config import logger

T = TypeVar("T")


def backoff_delays(attempts: int, base: float, maximum: float) -> list:
    """
    Delays slept between attempts: base, 2*base, 4*base ... capped at maximum

    Args:
        attempts: Total number of attempts
        base: First delay in seconds
        maximum: Upper bound for a single delay

    Returns:
        List of ``attempts - 1`` delays
    """
    return [min(maximum, base * (2 ** i)) for i in range(max(0, attempts - 1))]


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base: float,
    maximum: float,
    retry_on: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation`` until it succeeds or ``attempts`` are exhausted.

    Only exceptions in ``retry_on`` are retried; the last one is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    delays = backoff_delays(attempts, base, maximum)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == attempts:
                raise
            delay = delays[attempt - 1]
            logger.warning(
                f"Attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.2f}s"
            )
            await sleep(delay)
    raise AssertionError("unreachable")
