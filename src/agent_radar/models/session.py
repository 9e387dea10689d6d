"""Session, tool execution and token usage models."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Claude models share one context ceiling
CLAUDE_CONTEXT_WINDOW = 200_000


class SessionSource(str, Enum):
    """Which agent produced a session or telemetry stream."""
    CLAUDE_CODE = "claude_code"
    CODEX = "codex"
    UNKNOWN = "unknown"


class ModelPricing(BaseModel):
    """USD per million tokens."""

    model_config = ConfigDict(frozen=True)

    input: float
    output: float
    cache_read: float
    cache_write: float


OPUS_PRICING = ModelPricing(input=15.0, output=75.0, cache_read=1.50, cache_write=18.75)
SONNET_PRICING = ModelPricing(input=3.0, output=15.0, cache_read=0.30, cache_write=3.75)


class TokenUsage(BaseModel):
    """
    Running token counters for one session.

    Every update overwrites the counters it carries with the latest
    snapshot; values are never accumulated as deltas.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    reasoning_tokens: int = 0
    reported_total: Optional[int] = Field(
        default=None, description="Total as reported by the source, when it reports one"
    )
    context_window: Optional[int] = None
    rate_limit_percent: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        if self.reported_total is not None:
            return self.reported_total
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_read_tokens
            + self.cache_write_tokens
        )

    @property
    def context_percentage(self) -> float:
        window = self.context_window or CLAUDE_CONTEXT_WINDOW
        if window <= 0:
            return 0.0
        return min(100.0, self.total_tokens / window * 100)

    def estimated_cost(self, model: Optional[str]) -> float:
        """Rough USD cost, opus pricing for opus models and sonnet pricing otherwise."""
        pricing = OPUS_PRICING if model and "opus" in model else SONNET_PRICING
        return (
            self.input_tokens / 1_000_000 * pricing.input
            + self.output_tokens / 1_000_000 * pricing.output
            + self.cache_read_tokens / 1_000_000 * pricing.cache_read
            + self.cache_write_tokens / 1_000_000 * pricing.cache_write
        )


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TodoStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


class TodoItem(BaseModel):
    """One entry of an agent's task list."""

    content: str
    status: TodoStatus = TodoStatus.PENDING
    active_form: Optional[str] = None


class ToolCallExecution(BaseModel):
    """A tool invocation observed in a session log file."""

    id: str = Field(..., description="Source-provided call id, unique within a session")
    tool_name: str
    argument: Optional[str] = Field(default=None, description="Short display argument")
    start_time: datetime
    end_time: Optional[datetime] = None
    success: Optional[bool] = None
    tokens: Optional[TokenUsage] = Field(
        default=None, description="Session counters at completion time"
    )
    exit_code: Optional[int] = None
    description: Optional[str] = None
    timeout: Optional[int] = None
    output: Optional[str] = None
    workdir: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.end_time is None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return int(round((self.end_time - self.start_time).total_seconds() * 1000))


class SessionInfo(BaseModel):
    """Identity and discovery metadata of one live session."""

    session_id: str
    source: SessionSource
    log_path: Path
    cwd: Optional[str] = None
    model: Optional[str] = None
    git_branch: Optional[str] = None
    git_commit: Optional[str] = None
    cli_version: Optional[str] = None
    model_provider: Optional[str] = None
    started_at: Optional[datetime] = None
    connected: bool = True

    @property
    def display_name(self) -> str:
        folder = Path(self.cwd).name if self.cwd else "unknown"
        return f"{folder} ({self.session_id[:6]})"


class SessionState(BaseModel):
    """Mutable per-session aggregate owned by the session state machine."""

    is_thinking: bool = False
    active_tools: List[ToolCallExecution] = Field(default_factory=list)
    recent_tools: List[ToolCallExecution] = Field(default_factory=list)
    needs_permission: bool = False
    pending_permission_tool: Optional[str] = None
    last_stop_reason: Optional[str] = None
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    todos: List[TodoItem] = Field(default_factory=list)
    last_update: Optional[datetime] = None
    last_reasoning: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.is_thinking or bool(self.active_tools)

    @property
    def is_complete(self) -> bool:
        return (
            self.last_stop_reason == "end_turn"
            and not self.is_thinking
            and not self.active_tools
        )

    def find_active(self, call_id: str) -> Optional[ToolCallExecution]:
        for tool in self.active_tools:
            if tool.id == call_id:
                return tool
        return None


class SessionSnapshot(BaseModel):
    """Immutable published copy of one session."""

    model_config = ConfigDict(frozen=True)

    session: SessionInfo
    state: SessionState
    is_active: bool
    is_complete: bool
    total_tokens: int
