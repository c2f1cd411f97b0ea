"""Tests for RateLimitedQueue — priority, pacing, throttling and teardown."""

from __future__ import annotations

import asyncio

import pytest

from contract_spine.core.errors import ClientClosedError, QueueFullError, RateLimitError
from contract_spine.core.models import Request
from contract_spine.core.settings import RateLimitConfig
from contract_spine.execution.rate_limit import RateLimitedQueue
from tests._support.fakes import FakeClock


# ── Helpers ──────────────────────────────────────────────────────────────


def make_queue(clock: FakeClock, **config) -> RateLimitedQueue:
    return RateLimitedQueue(RateLimitConfig(**config), clock=clock, autostart=False)


async def drain() -> None:
    """Let dispatched handler tasks and future callbacks run."""
    for _ in range(5):
        await asyncio.sleep(0)


class Recorder:
    """Handler that records the operations it served."""

    def __init__(self):
        self.served: list[str] = []

    async def __call__(self, request: Request) -> str:
        self.served.append(request.operation)
        return f"done:{request.operation}"


# ── Ordering and pacing ──────────────────────────────────────────────────


class TestOrdering:
    @pytest.mark.asyncio
    async def test_higher_priority_first_then_fifo(self, clock):
        queue = make_queue(clock, requests_per_tick=1)
        handler = Recorder()
        futures = [
            queue.submit(Request("c", "low-1", priority=0), handler),
            queue.submit(Request("c", "high", priority=5), handler),
            queue.submit(Request("c", "low-2", priority=0), handler),
        ]

        for _ in range(3):
            queue.tick()
            await drain()

        assert handler.served == ["high", "low-1", "low-2"]
        assert [f.result() for f in futures] == ["done:low-1", "done:high", "done:low-2"]

    @pytest.mark.asyncio
    async def test_tick_budget(self, clock):
        queue = make_queue(clock, requests_per_tick=2)
        handler = Recorder()
        for i in range(3):
            queue.submit(Request("c", f"op{i}"), handler)

        assert queue.tick() == 2
        assert queue.pending == 1
        await drain()
        assert queue.tick() == 1
        await drain()
        assert handler.served == ["op0", "op1", "op2"]

    @pytest.mark.asyncio
    async def test_pacing_task_dispatches(self):
        queue = RateLimitedQueue(RateLimitConfig(queue_processing_interval=0.001))
        try:
            result = await asyncio.wait_for(queue.submit(Request("c", "op"), Recorder()), timeout=1.0)
            assert result == "done:op"
            assert queue.running
        finally:
            queue.close()


# ── Backpressure ─────────────────────────────────────────────────────────


class TestBackpressure:
    @pytest.mark.asyncio
    async def test_full_queue_rejects_immediately(self, clock):
        queue = make_queue(clock, max_queue_size=2)
        handler = Recorder()
        queue.submit(Request("c", "a"), handler)
        queue.submit(Request("c", "b"), handler)

        with pytest.raises(QueueFullError) as exc:
            queue.submit(Request("c", "c"), handler)
        assert exc.value.retryable is False
        assert exc.value.max_size == 2
        assert queue.pending == 2

    @pytest.mark.asyncio
    async def test_dispatch_frees_capacity(self, clock):
        queue = make_queue(clock, max_queue_size=1, requests_per_tick=1)
        handler = Recorder()
        queue.submit(Request("c", "a"), handler)
        queue.tick()
        queue.submit(Request("c", "b"), handler)  # does not raise
        assert queue.pending == 1
        assert queue.in_flight == 1
        await drain()


# ── Idempotency ──────────────────────────────────────────────────────────


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_duplicate_key_coalesces(self, clock):
        queue = make_queue(clock, requests_per_tick=5)
        handler = Recorder()
        first = queue.submit(Request("c", "pay", idempotency_key="k1"), handler)
        second = queue.submit(Request("c", "pay", idempotency_key="k1"), handler)

        assert queue.pending == 1
        queue.tick()
        assert await first == "done:pay"
        assert await second == "done:pay"
        assert handler.served == ["pay"]

    @pytest.mark.asyncio
    async def test_key_released_after_completion(self, clock):
        queue = make_queue(clock)
        handler = Recorder()
        first = queue.submit(Request("c", "pay", idempotency_key="k1"), handler)
        queue.tick()
        await first
        await drain()

        queue.submit(Request("c", "pay", idempotency_key="k1"), handler)
        assert queue.pending == 1


# ── Cancellation ─────────────────────────────────────────────────────────


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_by_request_id(self, clock):
        queue = make_queue(clock)
        handler = Recorder()
        request = Request("c", "op")
        future = queue.submit(request, handler)

        assert queue.cancel(request.request_id) is True
        await drain()
        assert future.cancelled()
        assert queue.pending == 0
        assert queue.tick() == 0
        assert handler.served == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_request(self, clock):
        assert make_queue(clock).cancel("nope") is False

    @pytest.mark.asyncio
    async def test_cancel_after_dispatch_keeps_result_cancelled(self, clock):
        queue = make_queue(clock)
        release = asyncio.Event()
        completed: list[str] = []

        async def slow(request: Request) -> str:
            await release.wait()
            completed.append(request.operation)
            return "late"

        future = queue.submit(Request("c", "op"), slow)
        queue.tick()
        await drain()
        future.cancel()
        release.set()
        await drain()

        assert completed == ["op"]
        assert future.cancelled()
        assert queue.in_flight == 0


# ── Throttling ───────────────────────────────────────────────────────────


class TestThrottling:
    @pytest.mark.asyncio
    async def test_retry_after_pauses_dispatch(self, clock):
        queue = make_queue(clock, default_backoff=1.0)

        async def throttled(request: Request) -> None:
            raise RateLimitError(retry_after=5.0)

        future = queue.submit(Request("c", "a"), throttled)
        queue.tick()
        with pytest.raises(RateLimitError):
            await future
        await drain()
        assert queue.paused_for == pytest.approx(5.0)

        handler = Recorder()
        queue.submit(Request("c", "b"), handler)
        assert queue.tick() == 0
        clock.advance(5.0)
        assert queue.tick() == 1
        await drain()
        assert handler.served == ["b"]

    @pytest.mark.asyncio
    async def test_backoff_grows_with_consecutive_throttles(self, clock):
        queue = make_queue(clock, default_backoff=1.0)

        async def throttled(request: Request) -> None:
            raise RateLimitError()

        pauses = []
        for _ in range(3):
            future = queue.submit(Request("c", "x"), throttled)
            queue.tick()
            with pytest.raises(RateLimitError):
                await future
            await drain()
            pauses.append(queue.paused_for)
            clock.advance(queue.paused_for)

        assert pauses == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_success_resets_streak(self, clock):
        queue = make_queue(clock, default_backoff=1.0)

        async def throttled(request: Request) -> None:
            raise RateLimitError()

        future = queue.submit(Request("c", "x"), throttled)
        queue.tick()
        with pytest.raises(RateLimitError):
            await future
        await drain()
        clock.advance(queue.paused_for)

        ok = queue.submit(Request("c", "ok"), Recorder())
        queue.tick()
        await ok
        await drain()

        future = queue.submit(Request("c", "x"), throttled)
        queue.tick()
        with pytest.raises(RateLimitError):
            await future
        await drain()
        assert queue.paused_for == 1.0

    @pytest.mark.asyncio
    async def test_manual_pause_keeps_longer_pause(self, clock):
        queue = make_queue(clock)
        queue.pause(10)
        queue.pause(2)
        assert queue.paused_for == 10


# ── Teardown ─────────────────────────────────────────────────────────────


class TestClose:
    @pytest.mark.asyncio
    async def test_close_fails_queued_and_cancels_in_flight(self, clock):
        queue = make_queue(clock, requests_per_tick=1)
        release = asyncio.Event()

        async def slow(request: Request) -> str:
            await release.wait()
            return "never"

        dispatched = queue.submit(Request("c", "first"), slow)
        queue.tick()
        await drain()
        queued = queue.submit(Request("c", "second"), slow)

        queue.close()

        with pytest.raises(ClientClosedError):
            await queued
        with pytest.raises(ClientClosedError):
            await dispatched
        await drain()
        assert queue.pending == 0
        assert queue.in_flight == 0

    @pytest.mark.asyncio
    async def test_submit_after_close(self, clock):
        queue = make_queue(clock)
        queue.close()
        with pytest.raises(ClientClosedError):
            queue.submit(Request("c", "op"), Recorder())
        assert queue.tick() == 0
