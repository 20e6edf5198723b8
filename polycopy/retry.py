"""
Bounded retry for order submission.

Contract: the call is attempted at least once and at most max_attempts times,
and a failure is reported exactly once (the last error). Intermediate errors
are logged and swallowed.

SubmissionOutcomeUnknown is never retried: the exchange may already hold the
order, so it propagates on the first occurrence.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from polycopy.errors import SubmissionOutcomeUnknown

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry configuration for order submission.

    Defaults reproduce the observed policy: 3 attempts, no delay, no jitter.
    """
    max_attempts: int = 3
    delay_seconds: float = 0.0     # Delay before the 2nd attempt
    backoff: float = 1.0           # Multiplier applied to the delay per attempt

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1: {self.max_attempts}")
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be non-negative: {self.delay_seconds}")
        if self.backoff < 1:
            raise ValueError(f"backoff must be >= 1: {self.backoff}")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after a failed `attempt` (1-based)."""
        return self.delay_seconds * (self.backoff ** (attempt - 1))


async def submit_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `fn()` under `policy`.

    Args:
        fn: Zero-argument coroutine factory performing one submission
        policy: Attempt budget and delay strategy
        sleep: Injected for tests

    Returns:
        The first successful result

    Raises:
        SubmissionOutcomeUnknown: immediately, without further attempts
        Exception: the last attempt's exception
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except SubmissionOutcomeUnknown:
            raise
        except Exception as e:
            if attempt == policy.max_attempts:
                raise
            logger.warning(
                f"Submission attempt {attempt}/{policy.max_attempts} failed: {e}"
            )

        delay = policy.delay_for(attempt)
        if delay > 0:
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("Retry loop exited without result")
