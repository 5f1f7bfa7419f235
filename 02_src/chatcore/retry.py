"""Reusable retry policy with capped exponential backoff."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterator

Sleeper = Callable[[float], Awaitable[None]]

GATEWAY_STATUSES = frozenset({502, 503, 504, 546})


@dataclass(frozen=True)
class RetryPolicy:
    """Max attempts, base delay and the retryable-status predicate."""

    max_attempts: int = 3
    base_delay: float = 0.5
    retryable_statuses: frozenset[int] = GATEWAY_STATUSES
    sleep: Sleeper = field(default=asyncio.sleep, compare=False, repr=False)

    def is_retryable_status(self, status: int) -> bool:
        """Check whether an HTTP status is worth another attempt."""
        return status in self.retryable_statuses

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    def backoff_delays(self) -> Iterator[float]:
        """Yield the delays between consecutive attempts."""
        for attempt in range(1, self.max_attempts):
            yield self.delay_for(attempt)

    def has_attempts_left(self, attempt: int) -> bool:
        """True while `attempt` (1-based) is not the last one."""
        return attempt < self.max_attempts

    async def wait(self, attempt: int) -> float:
        """Sleep the backoff for `attempt` and return the delay used."""
        delay = self.delay_for(attempt)
        await self.sleep(delay)
        return delay
