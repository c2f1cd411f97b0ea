"""Tests for deadlines and the cancellable timer group."""

from __future__ import annotations

import asyncio

import pytest

from contract_spine.core.errors import ClientClosedError, TimeoutError, TransientError
from contract_spine.execution.timeout import TimerGroup, run_with_deadline, with_deadline_async


class TestDeadlines:
    @pytest.mark.asyncio
    async def test_completes_within_deadline(self):
        async with with_deadline_async(1.0, operation="fast") as ctx:
            await asyncio.sleep(0)
        assert ctx.operation == "fast"
        assert ctx.elapsed < ctx.timeout_seconds

    @pytest.mark.asyncio
    async def test_exceeding_deadline_raises_transient_timeout(self):
        with pytest.raises(TimeoutError) as exc:
            async with with_deadline_async(0.01, operation="slow"):
                await asyncio.sleep(1)
        assert isinstance(exc.value, TransientError)
        assert exc.value.timeout == 0.01
        assert "slow" in exc.value.message

    @pytest.mark.asyncio
    async def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError):
            async with with_deadline_async(-1):
                pass

    @pytest.mark.asyncio
    async def test_run_with_deadline_none_means_unbounded(self):
        async def work():
            return 42

        assert await run_with_deadline(work, None) == 42
        assert await run_with_deadline(work, 1.0) == 42


class TestTimerGroup:
    @pytest.mark.asyncio
    async def test_sleep_returns(self):
        timers = TimerGroup()
        await timers.sleep(0)
        assert timers.pending == 0

    @pytest.mark.asyncio
    async def test_close_fails_sleepers(self):
        timers = TimerGroup()
        sleeper = asyncio.create_task(timers.sleep(60))
        await asyncio.sleep(0)
        assert timers.pending == 1

        timers.close()
        with pytest.raises(ClientClosedError):
            await sleeper
        assert timers.pending == 0

    @pytest.mark.asyncio
    async def test_close_cancels_callbacks(self):
        timers = TimerGroup()
        fired: list[int] = []
        timers.call_later(0.01, fired.append, 1)
        timers.close()
        await asyncio.sleep(0.03)
        assert fired == []

    @pytest.mark.asyncio
    async def test_callback_fires_and_is_forgotten(self):
        timers = TimerGroup()
        fired: list[int] = []
        timers.call_later(0, fired.append, 7)
        await asyncio.sleep(0.01)
        assert fired == [7]
        assert timers.pending == 0

    @pytest.mark.asyncio
    async def test_use_after_close(self):
        timers = TimerGroup()
        timers.close()
        with pytest.raises(ClientClosedError):
            await timers.sleep(0)
        with pytest.raises(ClientClosedError):
            timers.call_later(1, lambda: None)
