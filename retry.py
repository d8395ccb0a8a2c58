"""Bounded retry policy used for bootstrap calls"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when every attempt of a RetryPolicy has failed"""

    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(f"Giving up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class RetryPolicy:
    """
    Fixed-delay retry policy.

    Attributes:
        attempts: Total number of attempts, including the first one.
        delay: Seconds to wait between two attempts.
        sleep: Awaitable sleep function, replaceable in tests.
    """
    attempts: int = 10
    delay: float = 60.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """
        Await operation() until it succeeds or the attempt budget is spent.

        Returns the first successful result. Raises RetryExhausted, chained
        to the last failure, when all attempts fail. There is no delay after
        the final attempt.
        """
        last_error = None
        for attempt in range(1, self.attempts + 1):
            try:
                return await operation()
            except Exception as e:
                last_error = e
                logger.error(f"Retry: {description} failed ({attempt}/{self.attempts}): {e}")
                if attempt < self.attempts:
                    await self.sleep(self.delay)

        raise RetryExhausted(self.attempts, last_error) from last_error
