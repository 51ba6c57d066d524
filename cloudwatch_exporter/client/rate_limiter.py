"""Token-bucket rate limiter shared by every outbound CloudWatch call."""

import asyncio
import logging
from typing import Optional

from .errors import RateLimitTimeout, RateLimiterClosed


logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket with a background refill task.

    Up to ``burst`` acquisitions are admitted immediately. After that one
    token is added every ``1 / requests_per_second`` seconds; a tick that
    finds the bucket full is dropped.
    """

    def __init__(
        self,
        requests_per_second: float,
        burst: int,
        max_wait: float = 5.0
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_second: Sustained refill rate
            burst: Bucket capacity, also the initial token count
            max_wait: Default bound on how long acquire() waits for a token

        Raises:
            ValueError: If rate or burst are not positive
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        if burst <= 0:
            raise ValueError("burst must be positive")

        self.requests_per_second = requests_per_second
        self.burst = burst
        self.max_wait = max_wait
        self.refill_period = 1.0 / requests_per_second

        self._tokens = burst
        self._closed = False
        self._condition: Optional[asyncio.Condition] = None
        self._refill_task: Optional[asyncio.Task] = None

    @property
    def tokens(self) -> int:
        """Tokens currently available."""
        return self._tokens

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """
        Start the refill task on the running event loop.

        Must be called from within a coroutine. Calling it again while the
        task is alive is a no-op.
        """
        if self._closed:
            raise RateLimiterClosed("rate limiter is closed")

        if self._condition is None:
            self._condition = asyncio.Condition()

        if self._refill_task is None or self._refill_task.done():
            self._refill_task = asyncio.get_running_loop().create_task(
                self._refill(), name="rate-limiter-refill"
            )

    async def acquire(self, max_wait: Optional[float] = None) -> None:
        """
        Wait for a token.

        Args:
            max_wait: Seconds to wait before giving up (defaults to the
                limiter's max_wait)

        Raises:
            RateLimitTimeout: No token became available in time
            RateLimiterClosed: The limiter was closed before or during the wait
            asyncio.CancelledError: The calling task was cancelled
        """
        self.start()
        timeout = self.max_wait if max_wait is None else max_wait

        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: self._closed or self._tokens > 0),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                raise RateLimitTimeout(
                    f"no rate limit token available within {timeout:.2f}s"
                ) from None

            if self._closed:
                raise RateLimiterClosed("rate limiter is closed")

            self._tokens -= 1

    async def close(self) -> None:
        """Stop the refill task and wake every waiter with an error."""
        if self._closed:
            return
        self._closed = True

        if self._refill_task is not None:
            self._refill_task.cancel()
            try:
                await self._refill_task
            except asyncio.CancelledError:
                pass
            self._refill_task = None

        if self._condition is not None:
            async with self._condition:
                self._condition.notify_all()

        logger.debug("Rate limiter closed")

    async def _refill(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.refill_period)
            async with self._condition:
                if self._tokens >= self.burst:
                    continue
                self._tokens += 1
                self._condition.notify(1)
