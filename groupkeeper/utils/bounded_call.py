"""
Timeout and retry combinators for calls against the messaging client.

Every collaborator call goes through `with_timeout`; calls whose repetition
is safe (roster reads, invite codes) also go through `with_retry`. Only
raised exceptions are retried; status values returned by the client are
outcomes, not failures.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from groupkeeper.config import settings
from groupkeeper.features.group_membership.errors import (
    TERMINAL_ERRORS,
    CallTimeoutError,
    TransientCallError,
)
from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 30.0


async def with_timeout(awaitable: Awaitable[T], timeout_ms: int, label: str = "call") -> T:
    """
    Await `awaitable`, failing with CallTimeoutError after `timeout_ms`.

    The timer belongs to asyncio.wait_for and is cancelled on both paths;
    the timed-out operation is cancelled as well.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except TimeoutError as e:
        logger.warning("Bounded call timed out", label=label, timeout_ms=timeout_ms)
        raise CallTimeoutError(label, timeout_ms) from e


def retry_backoff(attempt: int, base: float, cap: float = MAX_BACKOFF_SECONDS) -> float:
    """Exponential backoff for a 1-based attempt index, plus jitter in [0, base)."""
    jitter = random.uniform(0, base) if base > 0 else 0.0
    return min(base * (2 ** (attempt - 1)) + jitter, cap)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    label: str,
    *,
    timeout_ms: int | None = None,
    backoff_base: float = 1.0,
) -> T:
    """
    Run `operation` up to `max_attempts` times, retrying on exceptions.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Upper bound on attempts (>= 1)
        label: Call name used in logs and errors
        timeout_ms: Optional per-attempt timeout
        backoff_base: Base of the exponential backoff, in seconds

    Raises:
        TransientCallError: When every attempt failed; chained from the last error
        MembershipError: Terminal errors (invalid identity, not found, ...) pass through
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            if timeout_ms is not None:
                return await with_timeout(operation(), timeout_ms, label)
            return await operation()

        except TERMINAL_ERRORS:
            raise

        except Exception as e:
            last_error = e
            if attempt < max_attempts:
                wait_time = retry_backoff(attempt, backoff_base)
                logger.warning(
                    "Bounded call failed, retrying",
                    label=label,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    wait_time=round(wait_time, 2),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(wait_time)

    logger.error(
        "Bounded call failed after all attempts",
        label=label,
        max_attempts=max_attempts,
        final_error=str(last_error),
    )
    raise TransientCallError(
        f"{label} failed after {max_attempts} attempts: {last_error}",
        label=label,
        attempts=max_attempts,
    ) from last_error


@dataclass(frozen=True, slots=True)
class CallPolicy:
    """Timeout/retry policy for collaborator calls."""

    timeout_ms: int
    max_attempts: int
    backoff_base: float
    # add/remove participant calls have no platform-side idempotency guarantee
    retry_membership_calls: bool = False

    @classmethod
    def from_settings(cls) -> "CallPolicy":
        return cls(
            timeout_ms=settings.CALL_TIMEOUT_MS,
            max_attempts=settings.CALL_MAX_ATTEMPTS,
            backoff_base=settings.RETRY_BACKOFF_BASE_SECONDS,
            retry_membership_calls=settings.RETRY_MEMBERSHIP_CALLS,
        )


class BoundedCaller:
    """Applies a CallPolicy to the three kinds of collaborator calls."""

    def __init__(self, policy: CallPolicy | None = None):
        self.policy = policy or CallPolicy.from_settings()

    async def read(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Side-effect free calls: timeout and retry."""
        return await with_retry(
            operation,
            self.policy.max_attempts,
            label,
            timeout_ms=self.policy.timeout_ms,
            backoff_base=self.policy.backoff_base,
        )

    async def mutate(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Membership changes: timeout, retried only when the policy allows it."""
        attempts = self.policy.max_attempts if self.policy.retry_membership_calls else 1
        if attempts == 1:
            return await with_timeout(operation(), self.policy.timeout_ms, label)
        return await with_retry(
            operation,
            attempts,
            label,
            timeout_ms=self.policy.timeout_ms,
            backoff_base=self.policy.backoff_base,
        )

    async def send(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Outbound messages: timeout only, a resend would duplicate the message."""
        return await with_timeout(operation(), self.policy.timeout_ms, label)
