"""Exponential backoff for directory calls.

Throttling (429) and transient 5xx responses are retried here; a server
``Retry-After`` wins over the computed delay, both capped at backoff_max.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from offboard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))

    def delay_for(self, attempt: int, exc: Exception) -> float:
        """Seconds to wait after the given zero-based attempt failed with exc."""
        requested = getattr(exc, "retry_after", None)
        if isinstance(requested, int | float) and requested >= 0:
            return min(float(requested), self.backoff_max)

        delay = self.backoff_base * 2**attempt
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return min(delay, self.backoff_max)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Await ``fn()`` until it succeeds or attempts run out.

    Only ``config.retryable_exceptions`` are retried; anything else, and the
    final retryable failure, propagates unchanged.

    Example:
        ```python
        await retry_with_backoff(
            lambda: client.send(request),
            config=RetryConfig(retryable_exceptions=(TransientGraphError,)),
            operation_name="graph:PATCH /users/123",
        )
        ```
    """
    config = config or RetryConfig()
    attempt = 0

    while True:
        try:
            return await fn()
        except config.retryable_exceptions as e:
            log = logger.bind(operation=operation_name, attempt=attempt + 1, error=str(e))
            if attempt + 1 >= config.max_attempts:
                log.error("retry_exhausted")
                raise

            delay = config.delay_for(attempt, e)
            log.bind(delay_seconds=round(delay, 2)).warning("retry_scheduled")
            await asyncio.sleep(delay)
            attempt += 1
