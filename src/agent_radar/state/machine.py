"""Per-session aggregate state and the timer-driven heuristics around it."""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..models.session import (
    SessionInfo,
    SessionSnapshot,
    SessionSource,
    SessionState,
    TodoItem,
    ToolCallExecution,
)
from ..models.telemetry import utcnow
from ..timers import CancellableTimer
from ..types import Clock
from .permissions import PendingPermissionCheck, PermissionPolicy

logger = logging.getLogger(__name__)

# Loop timers may fire marginally before the wall clock agrees the delay elapsed
TIMER_SLACK = 0.05

STOP_END_TURN = "end_turn"
STOP_INTERRUPTED = "interrupted"
STOP_IDLE_TIMEOUT = "idle_timeout"


class SessionStateMachine:
    """
    Owns every session of one source and the heuristics that age them.

    All mutators run on the owning event loop. Normalizers call the
    abstract operations (tool started/completed, turn boundary, stop,
    interruption, token update, todo update) and then :meth:`commit` once
    per batch. Timer callbacks re-validate state when they fire and commit
    on their own.

    Heuristics:
    - permission: eligible tools arm a check when they start (live only);
      a check still active after ``permission_delay`` escalates once and
      raises ``needs_permission``
    - idle: every live line re-arms a single-shot timer; when it fires,
      sessions not waiting on permission stop thinking
    - tool-idle: every live tool start re-arms a single-shot timer; when it
      fires, sessions with no active tools and no pending permission are
      marked ``idle_timeout`` and un-escalated checks are dropped
    """

    def __init__(
        self,
        source: SessionSource,
        policy: PermissionPolicy,
        permission_delay: float = 5.0,
        idle_delay: float = 3.0,
        tool_idle_delay: float = 10.0,
        recent_limit: int = 10,
        clock: Clock = utcnow,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.source = source
        self.policy = policy
        self.permission_delay = permission_delay
        self.recent_limit = recent_limit
        self._clock = clock
        self._on_change = on_change

        self.sessions: Dict[str, SessionInfo] = {}
        self.states: Dict[str, SessionState] = {}
        self.checks: Dict[Tuple[str, str], PendingPermissionCheck] = {}
        self.replaying: Set[str] = set()

        self.idle_timer = CancellableTimer(f"{source.value}.idle", self.on_idle, idle_delay)
        self.tool_idle_timer = CancellableTimer(
            f"{source.value}.tool_idle", self.on_tool_idle, tool_idle_delay
        )
        self.permission_timer = CancellableTimer(
            f"{source.value}.permission", self.check_pending_permissions, permission_delay
        )

    # Lifecycle

    def add_session(self, info: SessionInfo) -> SessionState:
        if info.session_id in self.states:
            self.sessions[info.session_id] = info
            return self.states[info.session_id]
        logger.info(f"[{self.source.value}] Tracking session {info.display_name}")
        self.sessions[info.session_id] = info
        self.states[info.session_id] = SessionState()
        return self.states[info.session_id]

    def remove_session(self, session_id: str) -> None:
        """Drop every entry keyed by ``session_id`` in one place."""
        self.sessions.pop(session_id, None)
        self.states.pop(session_id, None)
        self.replaying.discard(session_id)
        for key in [key for key in self.checks if key[0] == session_id]:
            del self.checks[key]
        self._schedule_permission_scan()
        if not self.states:
            self.idle_timer.cancel()
            self.tool_idle_timer.cancel()
        logger.info(f"[{self.source.value}] Stopped tracking session {session_id[:8]}")

    def shutdown(self) -> None:
        self.idle_timer.cancel()
        self.tool_idle_timer.cancel()
        self.permission_timer.cancel()
        for session_id in list(self.states):
            self.remove_session(session_id)

    def has_session(self, session_id: str) -> bool:
        return session_id in self.states

    def get_state(self, session_id: str) -> Optional[SessionState]:
        return self.states.get(session_id)

    def update_info(self, session_id: str, **fields: object) -> None:
        info = self.sessions.get(session_id)
        if info is None:
            return
        changes = {k: v for k, v in fields.items() if v is not None and getattr(info, k) != v}
        if changes:
            self.sessions[session_id] = info.model_copy(update=changes)

    def find_session(self, session_id: Optional[str] = None, cwd: Optional[str] = None) -> Optional[str]:
        """Match by id first, then the most recently updated session in ``cwd``."""
        if session_id and session_id in self.states:
            return session_id
        if not cwd:
            return None
        candidates = [sid for sid, info in self.sessions.items() if info.cwd == cwd]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda sid: self.states[sid].last_update or datetime.min.replace(tzinfo=timezone.utc),
        )

    def snapshots(self) -> Dict[str, SessionSnapshot]:
        return {
            session_id: SessionSnapshot(
                session=self.sessions[session_id],
                state=state.model_copy(deep=True),
                is_active=state.is_active,
                is_complete=state.is_complete,
                total_tokens=state.tokens.total_tokens,
            )
            for session_id, state in self.states.items()
        }

    def commit(self) -> None:
        if self._on_change is not None:
            self._on_change()

    # History replay

    def begin_replay(self, session_id: str) -> None:
        self.replaying.add(session_id)

    def end_replay(self, session_id: str) -> None:
        """Replayed history never leaves anything running."""
        self.replaying.discard(session_id)
        state = self.states.get(session_id)
        if state is None:
            return
        state.active_tools.clear()
        state.is_thinking = False
        self._clear_checks(session_id)
        self.idle_timer.arm()

    def is_replaying(self, session_id: str) -> bool:
        return session_id in self.replaying

    # Abstract operations

    def mark_activity(self, session_id: str, when: Optional[datetime] = None) -> None:
        state = self.states.get(session_id)
        if state is None:
            return
        state.last_update = when or self._clock()
        if session_id not in self.replaying:
            self.idle_timer.arm()

    def set_thinking(self, session_id: str, thinking: bool) -> None:
        state = self.states.get(session_id)
        if state is not None:
            state.is_thinking = thinking

    def tool_started(
        self,
        session_id: str,
        call_id: str,
        tool_name: str,
        start_time: Optional[datetime] = None,
        argument: Optional[str] = None,
        description: Optional[str] = None,
        timeout: Optional[int] = None,
        workdir: Optional[str] = None,
    ) -> Optional[ToolCallExecution]:
        """Append a new active tool and arm its permission check. Duplicate ids are ignored."""
        state = self.states.get(session_id)
        if state is None:
            return None
        if state.find_active(call_id) or any(t.id == call_id for t in state.recent_tools):
            logger.debug(f"Tool {call_id} already tracked, ignoring start")
            return None

        tool = ToolCallExecution(
            id=call_id,
            tool_name=tool_name,
            argument=argument,
            start_time=start_time or self._clock(),
            description=description,
            timeout=timeout,
            workdir=workdir,
        )
        state.active_tools.append(tool)

        if session_id not in self.replaying:
            self.tool_idle_timer.arm()
            if self.policy.is_eligible(tool_name):
                self.checks[(session_id, call_id)] = PendingPermissionCheck(
                    session_id=session_id,
                    call_id=call_id,
                    tool_name=tool_name,
                    armed_at=self._clock(),
                )
                self._schedule_permission_scan()
        return tool

    def tool_completed(
        self,
        session_id: str,
        call_id: str,
        end_time: Optional[datetime] = None,
        success: Optional[bool] = None,
        output: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> Optional[ToolCallExecution]:
        """Move an active tool to the head of recent tools. Unknown ids are no-ops."""
        state = self.states.get(session_id)
        if state is None:
            return None

        self.checks.pop((session_id, call_id), None)
        tool = state.find_active(call_id)
        if tool is None:
            logger.debug(f"Completion for untracked tool {call_id}, ignoring")
            self._refresh_permission(session_id)
            self._schedule_permission_scan()
            return None

        state.active_tools.remove(tool)
        completed = tool.model_copy(
            update={
                "end_time": end_time or self._clock(),
                "success": success,
                "output": output,
                "exit_code": exit_code,
                "tokens": state.tokens.model_copy(),
            }
        )
        state.recent_tools.insert(0, completed)
        del state.recent_tools[self.recent_limit:]
        state.is_thinking = True

        self._refresh_permission(session_id)
        self._schedule_permission_scan()
        return completed

    def turn_started(self, session_id: str) -> None:
        state = self.states.get(session_id)
        if state is not None:
            state.is_thinking = True
            state.last_stop_reason = None

    def turn_stopped(self, session_id: str, reason: str) -> None:
        state = self.states.get(session_id)
        if state is None:
            return
        state.last_stop_reason = reason
        if reason == STOP_END_TURN:
            state.is_thinking = False

    def interrupted(self, session_id: str) -> None:
        """An interruption overrides every heuristic, immediately."""
        state = self.states.get(session_id)
        if state is None:
            return
        logger.debug(f"[{self.source.value}] Session {session_id[:8]} interrupted")
        state.is_thinking = False
        state.last_stop_reason = STOP_INTERRUPTED
        state.active_tools.clear()
        self._clear_checks(session_id)

    def update_tokens(self, session_id: str, **counters: Optional[float]) -> None:
        """Overwrite the given counters with the latest snapshot; absent ones are kept."""
        state = self.states.get(session_id)
        if state is None:
            return
        changes = {key: value for key, value in counters.items() if value is not None}
        if changes:
            state.tokens = state.tokens.model_copy(update=changes)

    def set_todos(self, session_id: str, todos: List[TodoItem]) -> None:
        state = self.states.get(session_id)
        if state is not None:
            state.todos = list(todos)

    def set_reasoning(self, session_id: str, text: Optional[str]) -> None:
        state = self.states.get(session_id)
        if state is not None and text:
            state.last_reasoning = text

    # Notification-driven transitions

    def escalate_permission(self, session_id: str, tool_name: Optional[str] = None) -> bool:
        """
        A hook reported a permission prompt. Escalate the check of the named
        tool (or the newest active tool) so the flag stays backed by a check.
        """
        state = self.states.get(session_id)
        if state is None or not state.active_tools:
            return False

        tool = None
        if tool_name:
            tool = next((t for t in reversed(state.active_tools) if t.tool_name == tool_name), None)
        if tool is None:
            tool = state.active_tools[-1]

        key = (session_id, tool.id)
        check = self.checks.get(key)
        if check is None:
            check = PendingPermissionCheck(
                session_id=session_id,
                call_id=tool.id,
                tool_name=tool.tool_name,
                armed_at=self._clock(),
            )
            self.checks[key] = check
        check.escalated = True
        self._refresh_permission(session_id)
        self._schedule_permission_scan()
        return True

    def end_turn(self, session_id: str) -> None:
        """A hook reported the agent is waiting for input or has stopped."""
        state = self.states.get(session_id)
        if state is None:
            return
        state.is_thinking = False
        state.last_stop_reason = STOP_END_TURN
        self._clear_checks(session_id)

    # Heuristics

    def check_pending_permissions(self) -> None:
        """Escalate every armed check that outlived the delay while its tool still runs."""
        now = self._clock()
        changed = False
        for key, check in list(self.checks.items()):
            if check.escalated:
                continue
            elapsed = (now - check.armed_at).total_seconds()
            if elapsed < self.permission_delay - min(TIMER_SLACK, self.permission_delay * 0.1):
                continue
            state = self.states.get(check.session_id)
            if state is None or state.find_active(check.call_id) is None:
                del self.checks[key]
                continue
            check.escalated = True
            changed = True
            logger.info(
                f"[{self.source.value}] Session {check.session_id[:8]} needs permission "
                f"for {check.tool_name}"
            )
            self._refresh_permission(check.session_id)

        self._schedule_permission_scan()
        if changed:
            self.commit()

    def on_idle(self) -> None:
        changed = False
        for state in self.states.values():
            if state.needs_permission or not state.is_thinking:
                continue
            state.is_thinking = False
            changed = True
        if changed:
            logger.debug(f"[{self.source.value}] Idle timeout, sessions stopped thinking")
            self.commit()

    def on_tool_idle(self) -> None:
        for state in self.states.values():
            if not state.active_tools and not state.needs_permission:
                state.is_thinking = False
                state.last_stop_reason = STOP_IDLE_TIMEOUT

        # Escalated checks back a live needs-permission flag and are kept
        for key in [key for key, check in self.checks.items() if not check.escalated]:
            del self.checks[key]
        for session_id in self.states:
            self._refresh_permission(session_id)
        self._schedule_permission_scan()
        logger.debug(f"[{self.source.value}] Tool idle timeout")
        self.commit()

    # Internals

    def _clear_checks(self, session_id: str) -> None:
        for key in [key for key in self.checks if key[0] == session_id]:
            del self.checks[key]
        self._refresh_permission(session_id)
        self._schedule_permission_scan()

    def _refresh_permission(self, session_id: str) -> None:
        """Derive needs_permission from the session's escalated checks."""
        state = self.states.get(session_id)
        if state is None:
            return
        escalated = [
            check for (sid, _), check in self.checks.items()
            if sid == session_id and check.escalated
        ]
        state.needs_permission = bool(escalated)
        state.pending_permission_tool = escalated[-1].tool_name if escalated else None

    def _schedule_permission_scan(self) -> None:
        """Point the scan timer at the earliest un-escalated deadline, or cancel it."""
        armed = [check.armed_at for check in self.checks.values() if not check.escalated]
        if not armed:
            self.permission_timer.cancel()
            return
        remaining = self.permission_delay - (self._clock() - min(armed)).total_seconds()
        self.permission_timer.arm(max(0.0, remaining))
