"""Bounded polling used for readiness and sync checks."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class WaitOutcome(Enum):
    READY = "ready"
    ABORTED = "aborted"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed interval between attempts, capped at ``max_attempts``."""

    interval: float
    max_attempts: int

    @classmethod
    def for_duration(cls, interval: float, timeout: float) -> "RetryPolicy":
        return cls(interval=interval, max_attempts=max(1, int(timeout / interval)))

    @property
    def budget(self) -> float:
        return self.interval * self.max_attempts


async def wait_until(
    policy: RetryPolicy,
    is_ready: Callable[[], Awaitable[bool]],
    *,
    should_abort: Callable[[], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> WaitOutcome:
    """Poll ``is_ready`` until it succeeds, ``should_abort`` fires, or attempts run out.

    Each attempt sleeps for the policy interval first, then probes. The
    abort check runs after a failed probe so a crashed process is noticed
    on the same attempt.
    """
    for attempt in range(1, policy.max_attempts + 1):
        await sleep(policy.interval)
        if await is_ready():
            logger.debug("Ready after %d attempt(s)", attempt)
            return WaitOutcome.READY
        if should_abort is not None and should_abort():
            logger.debug("Aborted wait after %d attempt(s)", attempt)
            return WaitOutcome.ABORTED
    return WaitOutcome.EXHAUSTED
