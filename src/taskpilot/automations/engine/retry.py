"""Bounded retry with exponential backoff for channel sends."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from taskpilot.errors import ChannelError, FailureKind

logger = logging.getLogger(__name__)


@dataclass
class RetryResult:
    """Outcome of a retried call. error is the last failure, if any."""

    value: Any = None
    attempts: int = 0
    error: Optional[Exception] = None
    failure_kind: Optional[FailureKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RetryPolicy:
    """
    Retries transient failures with delay base * 2^(attempt-1), capped at
    max_delay. A ChannelError's retry_after hint replaces the computed delay
    (still capped). No retry starts once total_budget would be exceeded.
    Permanent failures return after the first attempt.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        total_budget: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.total_budget = total_budget
        self.sleep = sleep
        self.clock = clock

    def delay_for(self, attempt: int, error: Optional[Exception] = None) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if isinstance(error, ChannelError) and error.retry_after is not None:
            delay = error.retry_after
        return min(delay, self.max_delay)

    async def run(
        self,
        call: Callable[[], Awaitable[Any]],
        classify: Callable[[Exception], FailureKind],
        label: str = "call",
    ) -> RetryResult:
        started = self.clock()
        result = RetryResult()

        for attempt in range(1, self.max_attempts + 1):
            result.attempts = attempt
            try:
                result.value = await call()
                result.error = None
                result.failure_kind = None
                return result
            except Exception as e:
                result.error = e
                result.failure_kind = classify(e)

            if result.failure_kind != FailureKind.TRANSIENT:
                return result
            if attempt == self.max_attempts:
                break

            delay = self.delay_for(attempt, result.error)
            if self.clock() - started + delay > self.total_budget:
                logger.warning(f"{label}: retry budget of {self.total_budget}s exhausted after {attempt} attempts")
                break

            logger.info(f"{label}: transient failure ({result.error}); retry {attempt + 1} in {delay:.2f}s")
            await self.sleep(delay)

        return result
