"""Tests for discovery rescans, watcher lifecycle and service wiring."""

import asyncio
import json
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_radar.hub import LinesRead, SessionAttached, SessionDetached
from agent_radar.models.session import SessionInfo, SessionSource
from agent_radar.service import AgentRadarService
from agent_radar.session_manager import SessionManager
from agent_radar.sources.base import SessionDiscovery


class StaticDiscovery(SessionDiscovery):
    source = SessionSource.CLAUDE_CODE

    def __init__(self):
        super().__init__()
        self.sessions: List[SessionInfo] = []

    def discover(self) -> List[SessionInfo]:
        return list(self.sessions)


def session(tmp_path, session_id, text="{}\n"):
    path = tmp_path / f"{session_id}.jsonl"
    path.write_text(text)
    return SessionInfo(session_id=session_id, source=SessionSource.CLAUDE_CODE, log_path=path)


def submitted(hub, event_type):
    return [c.args[0] for c in hub.submit.call_args_list if isinstance(c.args[0], event_type)]


@pytest.mark.asyncio
async def test_scan_attaches_and_detaches(tmp_path):
    """Test that sessions are attached when found and detached when gone."""
    discovery = StaticDiscovery()
    hub, registry = MagicMock(), MagicMock()
    manager = SessionManager(discovery, hub, registry)
    first = session(tmp_path, "s1", '{"a": 1}\n')
    discovery.sessions = [first]

    assert await manager.scan() == 1
    attached = submitted(hub, SessionAttached)
    replayed = submitted(hub, LinesRead)
    assert attached[0].info.session_id == "s1"
    assert replayed[0].replay and replayed[0].lines == ['{"a": 1}']
    registry.watch.assert_called_once_with(first.log_path, manager.watchers["s1"].notify_changed)

    # Attached comes before the replayed lines
    events = [c.args[0] for c in hub.submit.call_args_list]
    assert isinstance(events[0], SessionAttached)

    discovery.sessions = []
    assert await manager.scan() == 0
    assert submitted(hub, SessionDetached)[0].session_id == "s1"
    registry.unwatch.assert_called_once_with(first.log_path)


@pytest.mark.asyncio
async def test_scan_polls_existing_watchers(tmp_path):
    """Test that a rescan picks up appends without a change notification."""
    discovery = StaticDiscovery()
    hub = MagicMock()
    manager = SessionManager(discovery, hub, MagicMock())
    info = session(tmp_path, "s1")
    discovery.sessions = [info]
    await manager.scan()

    with open(info.log_path, "a") as f:
        f.write('{"b": 2}\n')
    await manager.scan()

    live = [e for e in submitted(hub, LinesRead) if not e.replay]
    assert live[0].lines == ['{"b": 2}']


@pytest.mark.asyncio
async def test_moved_session_is_reattached(tmp_path):
    """Test that a session whose log path changed gets a fresh watcher."""
    discovery = StaticDiscovery()
    hub, registry = MagicMock(), MagicMock()
    manager = SessionManager(discovery, hub, registry)
    discovery.sessions = [session(tmp_path, "s1")]
    await manager.scan()

    moved = tmp_path / "elsewhere"
    moved.mkdir()
    discovery.sessions = [session(moved, "s1")]
    await manager.scan()

    assert manager.watchers["s1"].path == moved / "s1.jsonl"
    assert len(submitted(hub, SessionAttached)) == 2
    assert len(submitted(hub, SessionDetached)) == 1


@pytest.mark.asyncio
async def test_unreadable_session_is_not_kept(tmp_path):
    """Test that a session whose file vanished before opening is detached."""
    discovery = StaticDiscovery()
    hub = MagicMock()
    manager = SessionManager(discovery, hub, MagicMock())
    discovery.sessions = [
        SessionInfo(session_id="gone", source=SessionSource.CLAUDE_CODE, log_path=tmp_path / "gone.jsonl")
    ]

    assert await manager.scan() == 0
    assert manager.get_session_count() == 0
    assert submitted(hub, SessionDetached)[0].session_id == "gone"


@pytest.mark.asyncio
async def test_unreadable_watcher_does_not_abort_scan(tmp_path):
    """Test that a read error on one session still lets the scan reconcile others."""
    discovery = StaticDiscovery()
    hub = MagicMock()
    manager = SessionManager(discovery, hub, MagicMock())
    discovery.sessions = [session(tmp_path, "s1")]
    await manager.scan()
    manager.watchers["s1"].read_new = AsyncMock(side_effect=PermissionError("denied"))

    discovery.sessions = [session(tmp_path, "s1"), session(tmp_path, "s2")]

    assert await manager.scan() == 2
    assert [e.info.session_id for e in submitted(hub, SessionAttached)] == ["s1", "s2"]
    await manager.stop()


@pytest.mark.asyncio
async def test_stop_detaches_everything(tmp_path):
    """Test that stopping the manager tears down every watcher."""
    discovery = StaticDiscovery()
    hub = MagicMock()
    manager = SessionManager(discovery, hub, MagicMock(), scan_interval=0.01)
    discovery.sessions = [session(tmp_path, "s1"), session(tmp_path, "s2")]
    await manager.scan()
    manager.start_scan_task()
    await asyncio.sleep(0.03)

    await manager.stop()

    assert manager.watchers == {}
    assert {e.session_id for e in submitted(hub, SessionDetached)} == {"s1", "s2"}


@pytest.mark.asyncio
async def test_service_tracks_claude_transcript(settings):
    """Test the whole path from a transcript on disk to the published state."""
    project = Path(settings.claude_home) / "projects" / "-work-project"
    project.mkdir(parents=True)
    transcript = project / "abc123.jsonl"
    transcript.write_text(json.dumps({
        "type": "user",
        "timestamp": "2026-01-01T12:00:00Z",
        "cwd": "/work/project",
        "message": {"role": "user", "content": "run the build"},
    }) + "\n")

    service = AgentRadarService(settings)
    await service.start()
    try:
        await service.hub.join()
        assert "abc123" in service.published.snapshot.sessions
        assert service.listeners()["file_watcher"]

        with open(transcript, "a") as f:
            f.write(json.dumps({
                "type": "assistant",
                "timestamp": "2026-01-01T12:00:01Z",
                "message": {"role": "assistant", "model": "claude-sonnet-4", "content": [
                    {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "make"}},
                ]},
            }) + "\n")
        await service.managers[SessionSource.CLAUDE_CODE].scan()
        await service.hub.join()

        snapshot = service.published.get_session("abc123")
        assert [t.tool_name for t in snapshot.state.active_tools] == ["Bash"]
        assert service.published.snapshot.any_active
        assert service.health()["sessions"] == 1
    finally:
        await service.stop()

    assert service.published.snapshot.sessions == {}
