"""Hook notification models received on the Unix socket."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .telemetry import utcnow


class NotificationType(str, Enum):
    """Kinds of hook notifications; anything else decodes to UNKNOWN."""
    PERMISSION_PROMPT = "permission_prompt"
    IDLE_PROMPT = "idle_prompt"
    AUTH_SUCCESS = "auth_success"
    ELICITATION_DIALOG = "elicitation_dialog"
    STOP = "stop"
    UNKNOWN = "unknown"


class Notification(BaseModel):
    """One newline-delimited JSON object written to the notification socket."""

    session_id: Optional[str] = None
    cwd: Optional[str] = None
    message: Optional[str] = None
    notification_type: NotificationType = Field(..., description="Hook event kind")
    tool_name: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)

    @field_validator("notification_type", mode="before")
    @classmethod
    def _unknown_type(cls, value: Any) -> Any:
        if isinstance(value, NotificationType):
            return value
        if isinstance(value, str):
            try:
                return NotificationType(value)
            except ValueError:
                return NotificationType.UNKNOWN
        return value
