"""Common type definitions for Agent Radar.

This module provides TypedDict definitions for the messages pushed to
subscribers and the callback aliases shared by listeners and watchers.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from typing_extensions import NotRequired, TypedDict

if TYPE_CHECKING:
    from .exceptions import AgentRadarError
    from .models.state import StateSnapshot


class SnapshotMessageDict(TypedDict):
    """Full published state pushed to a WebSocket subscriber."""
    type: str
    version: int
    any_active: bool
    state: Dict[str, Any]


class ErrorDict(TypedDict):
    """Error message."""
    type: str
    code: str
    message: str
    detail: NotRequired[str]


class HealthDict(TypedDict):
    """Health endpoint payload."""
    status: str
    service: str
    version: int
    sessions: int
    telemetry_state: str
    listeners: Dict[str, bool]
    subscribers: int


class SessionSummaryDict(TypedDict):
    """One row of the session listing."""
    session_id: str
    source: str
    cwd: Optional[str]
    model: Optional[str]
    is_active: bool
    is_thinking: bool
    needs_permission: bool
    active_tools: List[str]
    total_tokens: int


WebSocketMessage = Union[
    SnapshotMessageDict,
    ErrorDict,
    Dict[str, Any],  # Fallback for unknown message types
]

# Source of "now" for everything that timestamps state
Clock = Callable[[], datetime]

# Listeners report transport and decode failures through this
ErrorCallback = Callable[["AgentRadarError"], None]

# Published state observers are notified once per committed transaction
StateObserver = Callable[["StateSnapshot"], None]
