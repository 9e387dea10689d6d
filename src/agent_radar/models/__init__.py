"""Data models for Agent Radar."""

from .notifications import Notification, NotificationType
from .session import (
    SessionInfo,
    SessionSnapshot,
    SessionSource,
    SessionState,
    TodoItem,
    TodoStatus,
    TokenUsage,
    ToolCallExecution,
)
from .state import StateSnapshot
from .telemetry import (
    AttributeMap,
    AttributeType,
    AttributeValue,
    CoordinatorState,
    GatewayRequest,
    GatewayRoute,
    LogRecord,
    MetricPoint,
    TelemetrySnapshot,
    ToolCall,
)

__all__ = [
    "AttributeMap",
    "AttributeType",
    "AttributeValue",
    "CoordinatorState",
    "GatewayRequest",
    "GatewayRoute",
    "LogRecord",
    "MetricPoint",
    "Notification",
    "NotificationType",
    "SessionInfo",
    "SessionSnapshot",
    "SessionSource",
    "SessionState",
    "StateSnapshot",
    "TelemetrySnapshot",
    "TodoItem",
    "TodoStatus",
    "TokenUsage",
    "ToolCall",
    "ToolCallExecution",
]
