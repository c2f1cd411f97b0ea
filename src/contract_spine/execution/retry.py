"""Retry policy: backoff delays with full jitter, and the per-call retry loop.

``delay_for`` is a pure function of the attempt number and a
:class:`~contract_spine.core.settings.RetryConfig`. ``RetryContext`` owns
the bookkeeping for one orchestrated call and drives a bounded loop of
attempts, sleeping between them through a cancellable sleep supplied by
the caller.

Example:
    >>> from contract_spine.core.settings import RetryConfig
    >>> config = RetryConfig(strategy="exponential", base_delay=1.0, max_delay=8.0, jitter=False)
    >>> [delay_for(n, config) for n in range(1, 6)]
    [1.0, 2.0, 4.0, 8.0, 8.0]
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from contract_spine.core.errors import RateLimitError, is_retryable
from contract_spine.core.logging import get_logger
from contract_spine.core.models import utcnow
from contract_spine.core.settings import BackoffStrategy, RetryConfig

T = TypeVar("T")

logger = get_logger(__name__)


def delay_for(
    attempt: int,
    config: RetryConfig,
    *,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based).

    ``fixed`` returns ``base_delay``; ``exponential`` returns
    ``base_delay * 2**(attempt-1)`` capped at ``max_delay``. With jitter the
    result is drawn uniformly from ``[0, computed]`` (full jitter).
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    if config.strategy == BackoffStrategy.FIXED:
        delay = config.base_delay
    else:
        # Cap the exponent so huge attempt numbers cannot overflow the float.
        delay = min(config.base_delay * (2 ** min(attempt - 1, 64)), config.max_delay)

    if config.jitter:
        delay = (rng or random).uniform(0, delay)

    return max(0.0, delay)


def should_retry(config: RetryConfig, attempts_made: int, error: BaseException) -> bool:
    """True if ``error`` is retryable and the retry budget is not spent.

    ``attempts_made`` counts attempts already performed, including the
    first try; ``max_retries`` excludes it.
    """
    if not is_retryable(error):
        return False
    return attempts_made <= config.max_retries


Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RetryContext:
    """Retry state for one orchestrated call.

    Discarded on terminal success or terminal failure.

    Example:
        >>> ctx = RetryContext(config=RetryConfig(max_retries=2))
        >>> body = await ctx.run_async(lambda attempt: send(request), sleep=timers.sleep)
    """

    config: RetryConfig
    on_retry: Callable[[int, Exception, float], None] | None = None
    rng: random.Random | None = None
    attempt: int = field(default=0, init=False)
    total_delay: float = field(default=0.0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def last_error_kind(self) -> str | None:
        """Class name of the most recent failure."""
        return type(self.last_error).__name__ if self.last_error is not None else None

    @property
    def elapsed_seconds(self) -> float:
        """Total elapsed time since first attempt."""
        return (utcnow() - self.started_at).total_seconds()

    def record_failure(self, error: Exception) -> None:
        """Record a failed attempt."""
        self.errors.append((self.attempt, error, utcnow()))
        self.last_error = error

    def should_retry(self) -> bool:
        """Check if another attempt is allowed after the last failure."""
        if self.last_error is None:
            return False
        return should_retry(self.config, self.attempt, self.last_error)

    def next_delay(self) -> float:
        """Delay before the next attempt; honours a throttling ``retry_after``."""
        delay = delay_for(self.attempt, self.config, rng=self.rng)
        if isinstance(self.last_error, RateLimitError) and self.last_error.retry_after:
            delay = max(delay, float(self.last_error.retry_after))
        return delay

    async def run_async(
        self,
        func: Callable[[int], Awaitable[T]],
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> T:
        """Call ``func(attempt)`` until it succeeds or retrying is not allowed.

        Args:
            func: Async callable receiving the 1-based attempt number
            sleep: Awaitable sleep used between attempts (cancellable timers)

        Returns:
            Result from the successful attempt

        Raises:
            The last exception once retries are exhausted or the error is
            not retryable.
        """
        while True:
            self.attempt += 1
            try:
                return await func(self.attempt)
            except Exception as e:
                self.record_failure(e)

                if not self.should_retry():
                    raise

                delay = self.next_delay()
                self.total_delay += delay

                logger.info(
                    "retry.scheduled",
                    attempt=self.attempt,
                    delay=round(delay, 3),
                    error_type=self.last_error_kind,
                )
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                await sleep(delay)


__all__ = [
    "delay_for",
    "should_retry",
    "RetryContext",
]
