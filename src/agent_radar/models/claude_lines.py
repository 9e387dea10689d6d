"""Line variants of the Claude Code session log (~/.claude/projects/*/<id>.jsonl)."""

import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..exceptions import DecodeError
from .variants import decode_variant


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Any = None
    is_error: Optional[bool] = None

    @property
    def content_text(self) -> str:
        """Flatten string or block-list content to plain text."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            return "\n".join(
                str(block.get("text", ""))
                for block in self.content
                if isinstance(block, dict) and block.get("type") == "text"
            )
        return ""


class UnknownBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "unknown"


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, UnknownBlock]

_BLOCK_TYPES = {
    "text": TextBlock,
    "thinking": ThinkingBlock,
    "tool_use": ToolUseBlock,
    "tool_result": ToolResultBlock,
}


class ClaudeUsage(BaseModel):
    """message.usage; absent keys leave the session counters untouched."""

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_read_input_tokens: Optional[int] = None
    cache_creation_input_tokens: Optional[int] = None


class ClaudeMessage(BaseModel):
    role: Optional[str] = None
    model: Optional[str] = None
    stop_reason: Optional[str] = None
    usage: Optional[ClaudeUsage] = None
    content: List[ContentBlock] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _decode_blocks(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [TextBlock(text=value)]
        if isinstance(value, list):
            return [
                decode_variant(block, _BLOCK_TYPES, UnknownBlock)
                if isinstance(block, dict) else UnknownBlock()
                for block in value
            ]
        return value


class ClaudeLineBase(BaseModel):
    """Fields every Claude log line may carry."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    cwd: Optional[str] = None
    git_branch: Optional[str] = Field(default=None, alias="gitBranch")
    timestamp: Optional[datetime] = None


class ClaudeUserLine(ClaudeLineBase):
    type: Literal["user"]
    message: Optional[ClaudeMessage] = None
    tool_use_result: Any = Field(default=None, alias="toolUseResult")


class ClaudeAssistantLine(ClaudeLineBase):
    type: Literal["assistant"]
    message: Optional[ClaudeMessage] = None


class ClaudeSystemLine(ClaudeLineBase):
    type: Literal["system"]
    content: Optional[str] = None
    subtype: Optional[str] = None


class ClaudeSummaryLine(ClaudeLineBase):
    type: Literal["summary"]
    summary: Optional[str] = None


class UnrecognizedClaudeLine(ClaudeLineBase):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = "unknown"


ClaudeLine = Union[
    ClaudeUserLine,
    ClaudeAssistantLine,
    ClaudeSystemLine,
    ClaudeSummaryLine,
    UnrecognizedClaudeLine,
]

_LINE_TYPES = {
    "user": ClaudeUserLine,
    "assistant": ClaudeAssistantLine,
    "system": ClaudeSystemLine,
    "summary": ClaudeSummaryLine,
}


def decode_claude_line(line: str) -> ClaudeLine:
    """
    Decode one Claude log line.

    Raises:
        DecodeError: If the line is not a JSON object
    """
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON in Claude log line: {e.msg}", detail=line)
    if not isinstance(raw, dict):
        raise DecodeError("Claude log line is not an object", detail=line)
    try:
        return decode_variant(raw, _LINE_TYPES, UnrecognizedClaudeLine)
    except ValidationError as e:
        raise DecodeError(f"Malformed Claude log line: {e.error_count()} errors", detail=line)
