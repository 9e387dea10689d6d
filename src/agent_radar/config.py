"""Application configuration with environment variable support."""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Priority: ENV > .env.local > .env > defaults
    .env.local is gitignored for local overrides

    Every variable is read with the AGENT_RADAR_ prefix, e.g.
    AGENT_RADAR_OTLP_PORT=4318.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        env_prefix="AGENT_RADAR_",
        case_sensitive=True,
        extra="ignore",
    )

    # Service configuration
    PROJECT_NAME: str = "Agent Radar"
    DEBUG: bool = False
    HOST: str = "127.0.0.1"
    PORT: int = 4319  # Read API / WebSocket
    LOG_LEVEL: str = "INFO"
    MAX_CONNECTIONS: int = 20

    # OTLP ingest gateway
    OTLP_ENABLED: bool = True
    OTLP_HOST: str = "127.0.0.1"
    OTLP_PORT: int = 4318
    OTLP_READ_TIMEOUT: float = 10.0
    OTLP_MAX_HEADER_BYTES: int = 65536

    # Notification socket
    NOTIFY_ENABLED: bool = True
    NOTIFY_SOCKET_PATH: str = "/tmp/agent-radar.sock"
    NOTIFY_READ_ATTEMPTS: int = 10
    NOTIFY_IDLE_SLEEP: float = 0.05   # No data buffered yet
    NOTIFY_BUSY_SLEEP: float = 0.01   # Some data already buffered

    # Session sources
    CLAUDE_ENABLED: bool = True
    CLAUDE_HOME: str = "~/.claude"
    CLAUDE_PROJECT: Optional[str] = None  # Restrict discovery to one workspace
    CODEX_ENABLED: bool = True
    CODEX_HOME: str = "~/.codex"

    # File watchers
    SCAN_INTERVAL: float = 10.0
    RECENCY_WINDOW: float = 300.0
    HISTORY_TAIL_BYTES: int = 50000
    CLAUDE_HISTORY_LINES: int = 50
    CODEX_HISTORY_LINES: int = 100

    # Session heuristics (seconds)
    CLAUDE_PERMISSION_DELAY: float = 5.0
    CODEX_PERMISSION_DELAY: float = 2.5
    IDLE_DELAY: float = 3.0
    TOOL_IDLE_DELAY: float = 10.0
    RECENT_TOOLS_LIMIT: int = 10
    ACTIVITY_GRACE_PERIOD: float = 1.0

    # Permission classification
    CLAUDE_PERMISSION_TOOLS: List[str] = [
        "Bash", "Write", "Edit", "MultiEdit", "Task", "NotebookEdit",
        "AskUserQuestion", "WebSearch", "WebFetch",
    ]
    CLAUDE_AUTO_APPROVED_TOOLS: List[str] = ["Read", "Glob", "Grep", "LS", "TodoWrite"]
    CLAUDE_PLUGIN_PREFIXES: List[str] = ["mcp__"]
    CODEX_PERMISSION_TOOLS: List[str] = ["shell", "exec_command", "local_shell", "apply_patch"]
    CODEX_AUTO_APPROVED_TOOLS: List[str] = ["update_plan", "read_file", "list_dir", "view_image"]

    # Telemetry completion heuristic
    TELEMETRY_IDLE_DELAY: float = 30.0
    ACTIVE_TIME_COMPLETION_DELAY: float = 15.0
    TELEMETRY_RECENT_CALLS: int = 10
    TELEMETRY_ACCEPT_CODEX: bool = True

    @property
    def claude_home(self) -> Path:
        return Path(self.CLAUDE_HOME).expanduser()

    @property
    def codex_home(self) -> Path:
        return Path(self.CODEX_HOME).expanduser()
