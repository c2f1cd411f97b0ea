"""Rate-limited request queue: priority ordering, pacing, and backend throttling.

Manifesto:
The backend enforces its own rate limits and answers ``429`` with a
``Retry-After`` when they are exceeded. The queue paces outgoing calls
*before* that happens, and when it happens anyway it stops dispatching
until the backend is ready again.

ARCHITECTURE
────────────
::

    submit(request, handler) ──► heap (-priority, seq) ──► tick() ──► dispatch task
                                  │                          │          │
                                  │ max_queue_size           │ budget:  │ RateLimitError
                                  └─► QueueFullError         │ per tick └─► pause(max(backoff,
                                                             │                   retry_after))
                                  idempotency_key ─► coalesce onto the outstanding future

    A background pacing task calls ``tick()`` every
    ``queue_processing_interval`` seconds; it is the only dispatcher.

BEST PRACTICES
──────────────
- Every attempt of an orchestrated call goes through ``submit`` so that
  retries respect the same pacing as first tries.
- Use ``priority`` sparingly; ties are served in submission order.

Related modules:
    circuit_breaker.py — fail-fast on sustained failures
    retry.py           — backoff on transient failures
    orchestrator.py    — composes the queue with the other components

Example::

    queue = RateLimitedQueue(RateLimitConfig(requests_per_tick=2))
    future = queue.submit(request, handler)
    response = await future

Tags:
    rate-limit, throttle, priority-queue, backpressure, contract-spine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from contract_spine.core.errors import ClientClosedError, QueueFullError, RateLimitError
from contract_spine.core.logging import get_logger
from contract_spine.core.models import Request
from contract_spine.core.settings import BackoffStrategy, RateLimitConfig, RetryConfig
from contract_spine.execution.retry import delay_for

logger = get_logger(__name__)

Handler = Callable[[Request], Awaitable[Any]]

# Upper bound for the local throttle backoff; a larger Retry-After still wins.
MAX_THROTTLE_BACKOFF = 60.0


@dataclass
class QueueEntry:
    """A request waiting in (or dispatched from) the queue."""

    request: Request
    handler: Handler
    future: asyncio.Future[Any]
    seq: int
    enqueued_at: float = field(default_factory=time.monotonic)

    @property
    def sort_key(self) -> tuple[int, int]:
        """Higher priority first, then submission order."""
        return (-self.request.priority, self.seq)

    @property
    def request_id(self) -> str:
        return self.request.request_id


class RateLimitedQueue:
    """Priority queue that dispatches at a bounded pace.

    Args:
        config: Pacing, bound and throttle settings.
        clock: Monotonic time source for pauses (injectable for tests).
        autostart: Start the pacing task on the first ``submit``. Tests
            pass ``False`` and drive ``tick()`` themselves.
        name: Identifier used in log records.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        autostart: bool = True,
        name: str = "default",
    ):
        self.config = config or RateLimitConfig()
        self.name = name
        self._clock = clock
        self._autostart = autostart

        self._heap: list[tuple[int, int, QueueEntry]] = []
        self._queued: dict[str, QueueEntry] = {}
        self._by_key: dict[str, QueueEntry] = {}
        self._dispatched: dict[str, tuple[QueueEntry, asyncio.Task[None]]] = {}
        self._seq = itertools.count()

        self._paused_until = 0.0
        self._throttle_streak = 0
        self._pacer: asyncio.Task[None] | None = None
        self._closed = False

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def pending(self) -> int:
        """Entries waiting for dispatch."""
        return len(self._queued)

    @property
    def in_flight(self) -> int:
        """Dispatched entries whose handler has not finished."""
        return len(self._dispatched)

    @property
    def paused_for(self) -> float:
        """Seconds until dispatch resumes (0 when not paused)."""
        return max(0.0, self._paused_until - self._clock())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def running(self) -> bool:
        return self._pacer is not None and not self._pacer.done()

    # ── Submission ───────────────────────────────────────────────────────

    def submit(self, request: Request, handler: Handler) -> asyncio.Future[Any]:
        """Enqueue ``request``; the returned future resolves with ``handler``'s result.

        Raises:
            ClientClosedError: After ``close()``.
            QueueFullError: When ``max_queue_size`` entries are already waiting.
        """
        if self._closed:
            raise ClientClosedError("Request queue is closed")

        key = request.idempotency_key
        if key is not None and key in self._by_key:
            existing = self._by_key[key]
            logger.debug(
                "queue.coalesced",
                request_id=request.request_id,
                original_request_id=existing.request_id,
                idempotency_key=key,
            )
            # A duplicate caller cancelling its wait must not cancel the original.
            return asyncio.shield(existing.future)

        if len(self._queued) >= self.config.max_queue_size:
            logger.warning(
                "queue.full",
                request_id=request.request_id,
                max_queue_size=self.config.max_queue_size,
            )
            raise QueueFullError(max_size=self.config.max_queue_size).with_context(
                request_id=request.request_id,
                target=request.target,
                operation=request.operation,
            )

        loop = asyncio.get_running_loop()
        entry = QueueEntry(
            request=request,
            handler=handler,
            future=loop.create_future(),
            seq=next(self._seq),
            enqueued_at=self._clock(),
        )
        entry.future.add_done_callback(lambda _f, e=entry: self._on_settled(e))

        self._queued[entry.request_id] = entry
        if key is not None:
            self._by_key[key] = entry
        heapq.heappush(self._heap, (*entry.sort_key, entry))

        logger.debug(
            "queue.enqueued",
            request_id=entry.request_id,
            priority=request.priority,
            pending=len(self._queued),
        )

        if self._autostart:
            self.start()
        return entry.future

    def cancel(self, request_id: str) -> bool:
        """Cancel a still-queued request. Returns False if it is not queued."""
        entry = self._queued.get(request_id)
        if entry is None:
            return False
        entry.future.cancel()
        return True

    # ── Dispatch ─────────────────────────────────────────────────────────

    def tick(self) -> int:
        """Dispatch up to ``requests_per_tick`` entries. Returns the number dispatched."""
        if self._closed or self.paused_for > 0:
            return 0

        dispatched = 0
        budget = self.config.requests_per_tick
        while budget > 0 and self._heap:
            _, _, entry = heapq.heappop(self._heap)
            if self._queued.get(entry.request_id) is not entry or entry.future.done():
                continue  # cancelled while waiting
            del self._queued[entry.request_id]

            task = asyncio.get_running_loop().create_task(
                self._dispatch(entry), name=f"queue-dispatch-{entry.request_id}"
            )
            self._dispatched[entry.request_id] = (entry, task)
            budget -= 1
            dispatched += 1

            logger.debug(
                "queue.dispatched",
                request_id=entry.request_id,
                waited=round(self._clock() - entry.enqueued_at, 3),
                pending=len(self._queued),
            )
        return dispatched

    async def _dispatch(self, entry: QueueEntry) -> None:
        try:
            result = await entry.handler(entry.request)
        except RateLimitError as e:
            if not entry.future.done():
                entry.future.set_exception(e)
            self._on_throttled(e)
        except Exception as e:
            self._throttle_streak = 0
            if not entry.future.done():
                entry.future.set_exception(e)
        else:
            self._throttle_streak = 0
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            self._dispatched.pop(entry.request_id, None)

    def _on_throttled(self, error: RateLimitError) -> None:
        self._throttle_streak += 1
        backoff_config = RetryConfig(
            strategy=BackoffStrategy.EXPONENTIAL,
            base_delay=self.config.default_backoff,
            max_delay=max(self.config.default_backoff, MAX_THROTTLE_BACKOFF),
            jitter=False,
        )
        backoff = delay_for(self._throttle_streak, backoff_config)
        seconds = max(backoff, error.retry_after or 0.0)
        logger.warning(
            "queue.throttled",
            streak=self._throttle_streak,
            retry_after=error.retry_after,
            pause=round(seconds, 3),
        )
        self.pause(seconds)

    def pause(self, seconds: float) -> None:
        """Stop dispatching for ``seconds`` (an existing longer pause is kept)."""
        self._paused_until = max(self._paused_until, self._clock() + max(0.0, seconds))

    def _on_settled(self, entry: QueueEntry) -> None:
        if entry.future.cancelled() and self._queued.get(entry.request_id) is entry:
            del self._queued[entry.request_id]
            logger.debug("queue.cancelled", request_id=entry.request_id)
        key = entry.request.idempotency_key
        if key is not None and self._by_key.get(key) is entry:
            del self._by_key[key]

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background pacing task (no-op if already running)."""
        if self._closed or self.running:
            return
        self._pacer = asyncio.get_running_loop().create_task(
            self._run(), name=f"queue-pacer-{self.name}"
        )

    async def _run(self) -> None:
        interval = self.config.queue_processing_interval
        while not self._closed:
            self.tick()
            await asyncio.sleep(interval)

    def close(self) -> None:
        """Stop pacing, fail queued entries, and cancel dispatched handlers."""
        if self._closed:
            return
        self._closed = True

        if self._pacer is not None:
            self._pacer.cancel()
            self._pacer = None

        queued = list(self._queued.values())
        self._queued.clear()
        self._heap.clear()
        for entry in queued:
            if not entry.future.done():
                entry.future.set_exception(ClientClosedError("Request queue closed before dispatch"))

        dispatched = list(self._dispatched.values())
        for entry, task in dispatched:
            if not entry.future.done():
                entry.future.set_exception(ClientClosedError("Request queue closed during dispatch"))
            task.cancel()
        self._by_key.clear()

        logger.info(
            "queue.closed",
            queue=self.name,
            dropped=len(queued),
            cancelled_in_flight=len(dispatched),
        )


__all__ = [
    "QueueEntry",
    "RateLimitedQueue",
]
