"""Shared fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agent_radar.config import Settings
from agent_radar.models.session import SessionInfo, SessionSource
from agent_radar.state import PermissionPolicy, SessionStateMachine


class FakeClock:
    """Manually advanced clock for heuristics that compare timestamps."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def claude_policy():
    return PermissionPolicy(
        eligible=["Bash", "Write", "Edit", "AskUserQuestion"],
        auto_approved=["Read", "Glob", "Grep", "TodoWrite"],
        plugin_prefixes=["mcp__"],
    )


@pytest.fixture
def claude_machine(claude_policy):
    """Claude machine with short delays and a real clock."""
    machine = SessionStateMachine(
        SessionSource.CLAUDE_CODE,
        claude_policy,
        permission_delay=0.05,
        idle_delay=5.0,
        tool_idle_delay=5.0,
    )
    machine.add_session(
        SessionInfo(
            session_id="claude-1",
            source=SessionSource.CLAUDE_CODE,
            log_path=Path("/tmp/claude-1.jsonl"),
            cwd="/work/project",
        )
    )
    yield machine
    machine.shutdown()


@pytest.fixture
def codex_machine():
    machine = SessionStateMachine(
        SessionSource.CODEX,
        PermissionPolicy(eligible=["shell", "apply_patch"], auto_approved=["update_plan"]),
        permission_delay=0.05,
        idle_delay=5.0,
        tool_idle_delay=5.0,
    )
    machine.add_session(
        SessionInfo(
            session_id="codex-1",
            source=SessionSource.CODEX,
            log_path=Path("/tmp/codex-1.jsonl"),
            cwd="/work/other",
        )
    )
    yield machine
    machine.shutdown()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path at a temp dir, listeners off."""
    return Settings(
        CLAUDE_HOME=str(tmp_path / "claude"),
        CODEX_HOME=str(tmp_path / "codex"),
        NOTIFY_SOCKET_PATH=str(tmp_path / "radar.sock"),
        OTLP_ENABLED=False,
        NOTIFY_ENABLED=False,
        OTLP_PORT=0,
        SCAN_INTERVAL=0.1,
        CLAUDE_PERMISSION_DELAY=0.05,
        CODEX_PERMISSION_DELAY=0.05,
        IDLE_DELAY=5.0,
        TOOL_IDLE_DELAY=5.0,
    )
