"""Tests for the event hub's ordering and error isolation."""

import asyncio
from unittest.mock import MagicMock

import pytest

from agent_radar.hub import EventHub, LinesRead, SessionDetached
from agent_radar.models.session import SessionSource


def lines(session_id, *text):
    return LinesRead(source=SessionSource.CLAUDE_CODE, session_id=session_id, lines=list(text))


@pytest.mark.asyncio
async def test_events_handled_in_submission_order():
    """Test FIFO delivery across event types."""
    hub = EventHub()
    seen = []
    hub.register(LinesRead, lambda e: seen.append(("lines", e.session_id)))
    hub.register(SessionDetached, lambda e: seen.append(("detached", e.session_id)))
    await hub.start()

    hub.submit(lines("a", "1"))
    hub.submit(SessionDetached(source=SessionSource.CLAUDE_CODE, session_id="a"))
    hub.submit(lines("b", "2"))
    await hub.join()

    assert seen == [("lines", "a"), ("detached", "a"), ("lines", "b")]
    assert hub.events_processed == 3
    await hub.stop()


@pytest.mark.asyncio
async def test_async_handlers_are_awaited_one_at_a_time():
    """Test that a slow async handler never interleaves with the next event."""
    hub = EventHub()
    trace = []

    async def slow(event):
        trace.append(f"start {event.session_id}")
        await asyncio.sleep(0.01)
        trace.append(f"end {event.session_id}")

    hub.register(LinesRead, slow)
    await hub.start()
    hub.submit(lines("a"))
    hub.submit(lines("b"))
    await hub.join()

    assert trace == ["start a", "end a", "start b", "end b"]
    await hub.stop()


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_the_hub():
    """Test that a handler exception is logged and later events still run."""
    hub = EventHub()
    good = MagicMock()
    hub.register(LinesRead, MagicMock(side_effect=ValueError("boom")))
    hub.register(LinesRead, good)
    await hub.start()

    hub.submit(lines("a"))
    hub.submit(lines("b"))
    await hub.join()

    assert good.call_count == 2
    assert hub.is_running
    await hub.stop()


@pytest.mark.asyncio
async def test_stop_drains_queue_and_threadsafe_submit():
    """Test that stop processes queued events and thread submits reach the loop."""
    hub = EventHub()
    seen = []
    hub.register(LinesRead, lambda e: seen.append(e.session_id))

    with pytest.raises(RuntimeError):
        hub.submit_threadsafe(lines("early"))

    await hub.start()
    await asyncio.to_thread(hub.submit_threadsafe, lines("thread"))
    hub.submit(lines("queued"))
    await hub.stop()

    assert seen == ["thread", "queued"]
    assert not hub.is_running
