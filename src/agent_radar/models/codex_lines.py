"""Line variants of the Codex rollout log (~/.codex/sessions/YYYY/MM/DD/rollout-*.jsonl)."""

import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..exceptions import DecodeError
from .variants import decode_variant


# session_meta

class GitInfo(BaseModel):
    branch: Optional[str] = None
    commit_hash: Optional[str] = None


class SessionMetaPayload(BaseModel):
    id: str
    cwd: Optional[str] = None
    cli_version: Optional[str] = None
    model_provider: Optional[str] = None
    timestamp: Optional[datetime] = None
    git: Optional[GitInfo] = None


# turn_context

class TurnContextPayload(BaseModel):
    model: Optional[str] = None
    cwd: Optional[str] = None


# event_msg payloads

class TokenTotals(BaseModel):
    input_tokens: Optional[int] = None
    cached_input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    reasoning_output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class TokenCountInfo(BaseModel):
    total_token_usage: Optional[TokenTotals] = None
    model_context_window: Optional[int] = None


class RateLimitWindow(BaseModel):
    used_percent: Optional[float] = None


class RateLimits(BaseModel):
    primary: Optional[RateLimitWindow] = None


class TokenCountEvent(BaseModel):
    type: Literal["token_count"]
    info: Optional[TokenCountInfo] = None
    rate_limits: Optional[RateLimits] = None


class AgentReasoningEvent(BaseModel):
    type: Literal["agent_reasoning"]
    text: str = ""


class TurnAbortedEvent(BaseModel):
    type: Literal["turn_aborted"]
    reason: Optional[str] = None


class TaskCompleteEvent(BaseModel):
    type: Literal["task_complete"]
    last_agent_message: Optional[str] = None


class UnknownEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "unknown"


EventPayload = Union[
    TokenCountEvent, AgentReasoningEvent, TurnAbortedEvent, TaskCompleteEvent, UnknownEvent
]

_EVENT_TYPES = {
    "token_count": TokenCountEvent,
    "agent_reasoning": AgentReasoningEvent,
    "turn_aborted": TurnAbortedEvent,
    "task_complete": TaskCompleteEvent,
}


# response_item payloads

class FunctionCallItem(BaseModel):
    """function_call and custom_tool_call items."""

    type: Literal["function_call", "custom_tool_call"]
    name: str
    call_id: str
    arguments: Optional[str] = None
    input: Optional[str] = None

    def parsed_arguments(self) -> Dict[str, Any]:
        """Arguments are a JSON document in a string; anything else is treated as empty."""
        text = self.arguments if self.arguments is not None else self.input
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return {"input": text}
        return parsed if isinstance(parsed, dict) else {}


class FunctionCallOutputItem(BaseModel):
    """function_call_output and custom_tool_call_output items."""

    type: Literal["function_call_output", "custom_tool_call_output"]
    call_id: str
    output: Any = None

    @property
    def output_text(self) -> str:
        if isinstance(self.output, str):
            return self.output
        if isinstance(self.output, dict):
            return str(self.output.get("content") or self.output.get("output") or "")
        return ""


class MessageItem(BaseModel):
    type: Literal["message"]
    role: Optional[str] = None
    content: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _blocks_only(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [block for block in value if isinstance(block, dict)]
        return [] if value is None else value

    @property
    def has_output_text(self) -> bool:
        return any(block.get("type") in ("output_text", "text") for block in self.content)


class UnknownItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "unknown"


ResponseItem = Union[FunctionCallItem, FunctionCallOutputItem, MessageItem, UnknownItem]

_ITEM_TYPES = {
    "function_call": FunctionCallItem,
    "custom_tool_call": FunctionCallItem,
    "function_call_output": FunctionCallOutputItem,
    "custom_tool_call_output": FunctionCallOutputItem,
    "message": MessageItem,
}


# Top-level lines

class CodexLineBase(BaseModel):
    type: str
    timestamp: Optional[datetime] = None


class SessionMetaLine(CodexLineBase):
    type: Literal["session_meta"]
    payload: SessionMetaPayload


class TurnContextLine(CodexLineBase):
    type: Literal["turn_context"]
    payload: TurnContextPayload


class EventMsgLine(CodexLineBase):
    type: Literal["event_msg"]
    payload: EventPayload

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_event(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return decode_variant(value, _EVENT_TYPES, UnknownEvent)
        return value


class ResponseItemLine(CodexLineBase):
    type: Literal["response_item"]
    payload: ResponseItem

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_item(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return decode_variant(value, _ITEM_TYPES, UnknownItem)
        return value


class UnrecognizedCodexLine(CodexLineBase):
    model_config = ConfigDict(extra="allow")

    type: str = "unknown"


CodexLine = Union[
    SessionMetaLine,
    TurnContextLine,
    EventMsgLine,
    ResponseItemLine,
    UnrecognizedCodexLine,
]

_LINE_TYPES = {
    "session_meta": SessionMetaLine,
    "turn_context": TurnContextLine,
    "event_msg": EventMsgLine,
    "response_item": ResponseItemLine,
}


def decode_codex_line(line: str) -> CodexLine:
    """
    Decode one Codex rollout line.

    Raises:
        DecodeError: If the line is not a JSON object
    """
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON in Codex log line: {e.msg}", detail=line)
    if not isinstance(raw, dict):
        raise DecodeError("Codex log line is not an object", detail=line)
    try:
        return decode_variant(raw, _LINE_TYPES, UnrecognizedCodexLine)
    except ValidationError as e:
        raise DecodeError(f"Malformed Codex log line: {e.error_count()} errors", detail=line)
