"""Retry handler with exponential backoff for transient remote failures."""

import asyncio
import random
import logging
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from botocore.exceptions import (
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..client.errors import RemoteCallError


T = TypeVar('T')

TRANSIENT_CAUSES = (
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
    ConnectionError,
    TimeoutError,
)


def is_transient(error: BaseException) -> bool:
    """True for network-level failures worth another attempt."""
    if isinstance(error, RemoteCallError):
        return isinstance(error.cause, TRANSIENT_CAUSES)
    return isinstance(error, TRANSIENT_CAUSES)


class RetryHandler:
    """
    Retry logic with exponential backoff and jitter.

    The client layer never retries; retries happen only where the
    exporter decides to, e.g. around the health probe.
    """

    @staticmethod
    async def with_retry(
        func: Callable[[], Awaitable[T]],
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exceptions: Tuple[type, ...] = (Exception,),
        retry_if: Optional[Callable[[BaseException], bool]] = None,
        logger: Optional[logging.Logger] = None
    ) -> T:
        """
        Execute a coroutine function with exponential backoff retry.

        Args:
            func: Async callable to execute
            max_attempts: Maximum attempts (default 3)
            base_delay: Initial delay in seconds (default 1.0)
            max_delay: Maximum delay in seconds (default 60.0)
            exceptions: Exception types that may be retried
            retry_if: Optional predicate; errors it rejects are raised at once
            logger: Optional logger for retry events

        Returns:
            Result from successful function execution

        Raises:
            Exception: Last exception if all attempts are exhausted, or the
                first non-retryable one
        """
        logger = logger or logging.getLogger(__name__)

        for attempt in range(1, max_attempts + 1):
            try:
                return await func()

            except exceptions as e:
                if retry_if is not None and not retry_if(e):
                    raise

                if attempt == max_attempts:
                    logger.error(f"All {max_attempts} attempts exhausted: {e}")
                    raise

                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                jitter = random.uniform(0, delay * 0.1)  # 0-10% jitter
                total_delay = delay + jitter

                logger.warning(
                    f"Attempt {attempt}/{max_attempts} failed: {e}. "
                    f"Retrying in {total_delay:.2f}s..."
                )

                await asyncio.sleep(total_delay)

        raise ValueError("max_attempts must be at least 1")
