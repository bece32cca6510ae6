"""Bounded polling with an injectable sleep.

Usage:
    policy = PollPolicy(interval=2.0, max_attempts=60)
    result = await policy.run(probe)   # probe() returns None to keep polling
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollTimeout(Exception):
    """Raised when the attempt budget is used up without a result."""
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"No result after {attempts} attempt(s)")


class PollPolicy:
    """Calls a probe until it returns a value or the attempt budget runs out.

    The probe is called ``max_attempts`` times at most, with ``sleep(interval)``
    before each call. A probe returning None means "not yet"; an exception
    raised by the probe propagates to the caller.

    Attributes:
        interval: Seconds to wait before each attempt.
        max_attempts: Maximum number of probe calls.
    """

    def __init__(
        self,
        interval: float = 2.0,
        max_attempts: int = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def run(self, probe: Callable[[int], Awaitable[Optional[T]]]) -> T:
        """Run the probe until it yields a non-None result.

        Args:
            probe: Async callable receiving the 1-based attempt number.

        Returns:
            The first non-None probe result.

        Raises:
            PollTimeout: If every attempt returned None.
        """
        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.interval)
            result = await probe(attempt)
            if result is not None:
                return result
            logger.debug(f"Poll attempt {attempt}/{self.max_attempts}: not ready")
        raise PollTimeout(self.max_attempts)
