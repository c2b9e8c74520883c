"""
Randomized pauses used to throttle interaction with the messaging platform.
"""

import asyncio
import random

from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def jittered_seconds(
    min_seconds: float, max_seconds: float | None = None, jitter: float = 0.0
) -> float:
    """Pick a pause length uniformly in [min, max] plus up to `jitter` seconds."""
    upper = min_seconds if max_seconds is None else max_seconds
    if upper < min_seconds:
        raise ValueError(f"max_seconds ({upper}) must not be below min_seconds ({min_seconds})")
    base = random.uniform(min_seconds, upper) if upper > min_seconds else min_seconds
    extra = random.uniform(0, jitter) if jitter > 0 else 0.0
    return max(0.0, base + extra)


async def delay_secs(seconds: float, jitter: float = 0.0) -> float:
    """
    Pause for `seconds` plus a random jitter.

    Returns:
        The number of seconds actually slept
    """
    duration = jittered_seconds(seconds, None, jitter)
    logger.debug("Delaying", seconds=round(duration, 2))
    await asyncio.sleep(duration)
    return duration


async def delay_between(min_seconds: float, max_seconds: float, jitter: float = 0.0) -> float:
    """Pause for a random duration in [min, max] plus jitter."""
    duration = jittered_seconds(min_seconds, max_seconds, jitter)
    logger.debug("Delaying", seconds=round(duration, 2))
    await asyncio.sleep(duration)
    return duration
