"""Unit tests for routing hook notifications to sessions."""

import pytest

from agent_radar.exceptions import DecodeError
from agent_radar.models.notifications import Notification, NotificationType
from agent_radar.notifications import NotificationRouter, decode_notification
from agent_radar.state.machine import STOP_END_TURN


def test_decode_notification_unknown_type():
    """Test that unknown notification types decode to UNKNOWN."""
    notification = decode_notification('{"notification_type": "brand_new", "session_id": "x"}')
    assert notification.notification_type == NotificationType.UNKNOWN


@pytest.mark.parametrize("line", ["{bad", "[]", '{"session_id": "x"}'])
def test_decode_notification_rejects_bad_lines(line):
    """Test that garbage and missing types are decode errors."""
    with pytest.raises(DecodeError):
        decode_notification(line)


@pytest.mark.asyncio
async def test_permission_prompt_escalates_by_session_id(claude_machine, codex_machine):
    """Test that a permission prompt escalates the matching session's tool."""
    claude_machine.tool_started("claude-1", "a1", "Bash")
    router = NotificationRouter([claude_machine, codex_machine])

    changed = router.route(Notification(
        session_id="claude-1", notification_type=NotificationType.PERMISSION_PROMPT, tool_name="Bash",
    ))

    state = claude_machine.get_state("claude-1")
    assert changed
    assert state.needs_permission
    assert state.pending_permission_tool == "Bash"


@pytest.mark.asyncio
async def test_elicitation_defaults_to_ask_user_question(claude_machine):
    """Test that an elicitation dialog escalates as AskUserQuestion."""
    claude_machine.tool_started("claude-1", "q1", "AskUserQuestion")
    router = NotificationRouter([claude_machine])

    router.route(Notification(cwd="/work/project", notification_type=NotificationType.ELICITATION_DIALOG))

    assert claude_machine.get_state("claude-1").pending_permission_tool == "AskUserQuestion"


@pytest.mark.asyncio
async def test_idle_prompt_matched_by_cwd_ends_turn(claude_machine, codex_machine):
    """Test that an idle prompt without a known id is matched by cwd."""
    codex_machine.set_thinking("codex-1", True)
    router = NotificationRouter([claude_machine, codex_machine])

    assert router.route(Notification(
        session_id="unknown-id", cwd="/work/other", notification_type=NotificationType.IDLE_PROMPT,
    ))

    state = codex_machine.get_state("codex-1")
    assert not state.is_thinking
    assert state.last_stop_reason == STOP_END_TURN


def test_auth_success_and_unmatched(claude_machine):
    """Test that auth notices change nothing and unmatched ones are counted."""
    router = NotificationRouter([claude_machine])

    assert not router.route(Notification(notification_type=NotificationType.AUTH_SUCCESS))
    assert not router.route(Notification(cwd="/nowhere", notification_type=NotificationType.STOP))
    assert router.unmatched == 1
