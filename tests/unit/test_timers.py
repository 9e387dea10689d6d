"""Unit tests for cancellable timer slots."""

import asyncio

import pytest

from agent_radar.timers import CancellableTimer


@pytest.mark.asyncio
async def test_rearm_runs_callback_once():
    """Test that re-arming cancels the previous instance."""
    calls = []
    timer = CancellableTimer("test", lambda: calls.append(1), 0.02)

    timer.arm()
    timer.arm()
    timer.arm()
    await asyncio.sleep(0.08)

    assert calls == [1]
    assert not timer.armed


@pytest.mark.asyncio
async def test_cancel_prevents_fire():
    """Test that a cancelled timer never runs its callback."""
    calls = []
    timer = CancellableTimer("test", lambda: calls.append(1), 0.02)

    timer.arm()
    timer.cancel()
    await asyncio.sleep(0.05)

    assert calls == []


@pytest.mark.asyncio
async def test_stale_generation_is_dropped():
    """Test that a callback queued for an older arm does nothing."""
    calls = []
    timer = CancellableTimer("test", lambda: calls.append(1), 10)
    timer.arm()
    stale = timer.generation
    timer.cancel()

    timer._fire(stale)

    assert calls == []


@pytest.mark.asyncio
async def test_repeating_timer_stops_when_callback_cancels():
    """Test that a repeating timer re-arms until its callback cancels it."""
    calls = []

    def tick():
        calls.append(1)
        if len(calls) == 3:
            timer.cancel()

    timer = CancellableTimer("repeat", tick, 0.01, repeat=True)
    timer.arm()
    await asyncio.sleep(0.15)

    assert len(calls) == 3
    assert not timer.armed


@pytest.mark.asyncio
async def test_callback_error_is_contained():
    """Test that a failing callback is logged, not raised."""
    def boom():
        raise ValueError("boom")

    timer = CancellableTimer("boom", boom, 0.01)
    timer.arm()
    await asyncio.sleep(0.03)

    assert timer.fire_count == 1
