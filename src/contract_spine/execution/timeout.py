"""Deadlines and cancellable timers for asynchronous calls.

Every outbound call carries a maximum duration; exceeding it raises
:class:`~contract_spine.core.errors.TimeoutError`, a transient error the
retry loop may retry. Retry delays and the session-expiry watcher go
through a :class:`TimerGroup` so that tearing a client down cancels
everything that is still waiting.

Architecture:
    ::

        with_deadline_async(seconds)          TimerGroup
          └─ asyncio.timeout                    ├─ sleep(seconds)        ─ retry delays
             └─ TimeoutError (transient)        ├─ call_later(s, fn)     ─ expiry watcher
                                                └─ close()               ─ fail sleepers with
                                                                           ClientClosedError,
                                                                           cancel callbacks

Examples:
    >>> async with with_deadline_async(10.0, operation="send"):
    ...     response = await transport.send(...)

    >>> timers = TimerGroup()
    >>> await timers.sleep(0.5)
    >>> timers.close()   # any sleeper still waiting raises ClientClosedError

Guardrails:
    - Timeouts should be generous enough for normal operation
    - ``asyncio.timeout`` requires Python 3.11+

Tags:
    timeout, deadline, timers, resilience, contract-spine
"""

from __future__ import annotations

import asyncio
import builtins
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from contract_spine.core.errors import ClientClosedError, TimeoutError
from contract_spine.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class DeadlineContext:
    """Context for tracking deadline state.

    Attributes:
        deadline: Absolute deadline timestamp (monotonic clock)
        timeout_seconds: Original timeout value in seconds
        operation: Name/description of the operation
        start_time: When the deadline context started
    """

    deadline: float
    timeout_seconds: float
    operation: str = "operation"
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        """Elapsed time since start in seconds."""
        return time.monotonic() - self.start_time


@asynccontextmanager
async def with_deadline_async(
    seconds: float, operation: str | None = None
) -> AsyncIterator[DeadlineContext]:
    """Async context manager for enforcing a time limit.

    Raises:
        TimeoutError: If the deadline is exceeded
        ValueError: If seconds < 0
    """
    if seconds < 0:
        raise ValueError(f"Timeout must be non-negative, got {seconds}")

    now = time.monotonic()
    ctx = DeadlineContext(
        deadline=now + seconds,
        timeout_seconds=seconds,
        operation=operation or "operation",
        start_time=now,
    )

    try:
        async with asyncio.timeout(seconds):
            yield ctx
    except builtins.TimeoutError:
        raise TimeoutError(
            f"Operation '{ctx.operation}' timed out after {seconds}s (ran for {ctx.elapsed:.2f}s)",
            timeout=seconds,
        ) from None


async def run_with_deadline(
    func: Callable[[], Awaitable[T]],
    seconds: float | None,
    operation: str | None = None,
) -> T:
    """Await ``func()`` under a deadline (``None`` means no limit)."""
    if seconds is None:
        return await func()
    async with with_deadline_async(seconds, operation):
        return await func()


class TimerGroup:
    """Cancellable timers owned by one client.

    ``sleep`` parks the caller on a future woken by ``loop.call_later``;
    ``call_later`` schedules a background callback. ``close()`` fails every
    parked sleeper with ``ClientClosedError`` and cancels every scheduled
    callback, so nothing fires after teardown.
    """

    def __init__(self) -> None:
        self._sleepers: set[asyncio.Future[None]] = set()
        self._handles: set[asyncio.TimerHandle] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Timers that have not fired yet."""
        return len(self._sleepers) + len(self._handles)

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the group is closed first."""
        if self._closed:
            raise ClientClosedError("Timer group is closed")

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        handle = loop.call_later(max(0.0, seconds), _wake, waiter)
        self._sleepers.add(waiter)
        try:
            await waiter
        finally:
            handle.cancel()
            self._sleepers.discard(waiter)

    def call_later(self, seconds: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        """Schedule ``callback(*args)`` after ``seconds`` on the running loop."""
        if self._closed:
            raise ClientClosedError("Timer group is closed")

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._handles.discard(handle)
            callback(*args)

        handle = loop.call_later(max(0.0, seconds), _fire)
        self._handles.add(handle)
        return handle

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        """Cancel one scheduled callback."""
        handle.cancel()
        self._handles.discard(handle)

    def close(self) -> None:
        """Cancel everything; later ``sleep``/``call_later`` calls raise."""
        self._closed = True
        cancelled = self.pending
        for waiter in list(self._sleepers):
            if not waiter.done():
                waiter.set_exception(ClientClosedError("Client destroyed while waiting to retry"))
        for handle in list(self._handles):
            handle.cancel()
        self._sleepers.clear()
        self._handles.clear()
        if cancelled:
            logger.debug("timers.cancelled", count=cancelled)


def _wake(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


__all__ = [
    "DeadlineContext",
    "with_deadline_async",
    "run_with_deadline",
    "TimerGroup",
]
