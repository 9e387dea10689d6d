"""Claude Code: session discovery and log line normalization."""

import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.claude_lines import (
    ClaudeAssistantLine,
    ClaudeLine,
    ClaudeMessage,
    ClaudeUserLine,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    decode_claude_line,
)
from ..models.session import SessionInfo, SessionSource, TodoItem, TodoStatus
from ..exceptions import DecodeError
from .base import LineNormalizer, SessionDiscovery, is_recent, read_head, truncate

logger = logging.getLogger(__name__)

TOOL_RESULT_INTERRUPT_MARKERS = ("interrupted by user", "Request interrupted")
TEXT_INTERRUPT_MARKER = "[Request interrupted by user"
REJECTED_RESULT_MARKERS = ("interrupted", "rejected")

# Sub-agent transcripts live beside the main session file
SUBAGENT_PREFIX = "agent-"

HEAD_BYTES = 16 * 1024


def project_key(workspace: str) -> str:
    """Directory name Claude Code uses for a workspace under ~/.claude/projects."""
    return re.sub(r"[/.]", "-", workspace.rstrip("/"))


def extract_tool_argument(tool_input: Dict[str, Any]) -> Optional[str]:
    """Short display argument for a tool call."""
    if isinstance(tool_input.get("pattern"), str):
        return tool_input["pattern"]
    if isinstance(tool_input.get("command"), str):
        return truncate(tool_input["command"], 50)
    if isinstance(tool_input.get("file_path"), str):
        return os.path.basename(tool_input["file_path"])
    if isinstance(tool_input.get("query"), str):
        return truncate(tool_input["query"], 50)
    if isinstance(tool_input.get("prompt"), str):
        return truncate(tool_input["prompt"], 50)
    return None


def parse_todos(raw: Any) -> List[TodoItem]:
    """TodoWrite ``todos`` input; entries without content or status are skipped."""
    if not isinstance(raw, list):
        return []
    todos = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        content, status = entry.get("content"), entry.get("status")
        if not isinstance(content, str) or not isinstance(status, str):
            continue
        active_form = entry.get("activeForm")
        todos.append(
            TodoItem(
                content=content,
                status=TodoStatus.parse(status),
                active_form=active_form if isinstance(active_form, str) else None,
            )
        )
    return todos


class ClaudeDiscovery(SessionDiscovery):
    """
    Finds live Claude Code transcripts.

    Structure:
        ~/.claude/projects/{project-key}/{session-id}.jsonl
    """

    source = SessionSource.CLAUDE_CODE

    def __init__(
        self,
        claude_home: Path,
        recency_window: float = 300.0,
        workspace: Optional[str] = None,
    ):
        super().__init__(recency_window)
        self.projects_dir = claude_home / "projects"
        self.workspace = workspace

    def find_project_dir(self, workspace: str) -> Optional[Path]:
        """Direct key-derived lookup, falling back to a scan on the normalized path."""
        key = project_key(workspace)
        direct = self.projects_dir / key
        if direct.is_dir():
            return direct

        if not self.projects_dir.is_dir():
            return None
        wanted = workspace.rstrip("/").lower()
        for candidate in self.projects_dir.iterdir():
            if not candidate.is_dir():
                continue
            name = candidate.name.lower()
            if name == key.lower() or name.replace("-", "/") == wanted:
                logger.debug(f"Resolved {workspace} to {candidate.name} by scan")
                return candidate
        return None

    def _project_dirs(self) -> List[Path]:
        if self.workspace:
            found = self.find_project_dir(self.workspace)
            return [found] if found else []
        if not self.projects_dir.is_dir():
            return []
        return [p for p in self.projects_dir.iterdir() if p.is_dir()]

    def _read_metadata(self, path: Path) -> Dict[str, Optional[str]]:
        metadata: Dict[str, Optional[str]] = {"cwd": None, "git_branch": None}
        for text in read_head(path, HEAD_BYTES):
            try:
                line = decode_claude_line(text)
            except DecodeError:
                continue
            metadata["cwd"] = metadata["cwd"] or line.cwd
            metadata["git_branch"] = metadata["git_branch"] or line.git_branch
            if metadata["cwd"] and metadata["git_branch"]:
                break
        return metadata

    def discover(self) -> List[SessionInfo]:
        now = time.time()
        sessions = []
        for project_dir in self._project_dirs():
            for path in project_dir.glob("*.jsonl"):
                if path.name.startswith(SUBAGENT_PREFIX):
                    continue
                if not is_recent(path, self.recency_window, now):
                    continue
                metadata = self._read_metadata(path)
                sessions.append(
                    SessionInfo(
                        session_id=path.stem,
                        source=self.source,
                        log_path=path,
                        cwd=metadata["cwd"] or self.workspace,
                        git_branch=metadata["git_branch"],
                    )
                )
        return sessions


class ClaudeNormalizer(LineNormalizer):
    """Applies Claude Code transcript lines to the Claude state machine."""

    source = SessionSource.CLAUDE_CODE
    activity_implies_thinking = True

    def decode(self, line: str) -> ClaudeLine:
        return decode_claude_line(line)

    def apply(self, session_id: str, line: ClaudeLine) -> None:
        machine = self.machine

        if isinstance(line, ClaudeUserLine) and line.tool_use_result is not None:
            result_text = str(line.tool_use_result)
            if any(marker in result_text for marker in TOOL_RESULT_INTERRUPT_MARKERS):
                machine.interrupted(session_id)
                return

        machine.update_info(session_id, cwd=line.cwd, git_branch=line.git_branch)

        if isinstance(line, (ClaudeUserLine, ClaudeAssistantLine)) and line.message:
            self._apply_message(session_id, line.message, line)

    def _apply_message(self, session_id: str, message: ClaudeMessage, line: ClaudeLine) -> None:
        machine = self.machine
        state = machine.get_state(session_id)
        if state is None:
            return

        machine.update_info(session_id, model=message.model)

        if message.role in ("user", "assistant"):
            machine.turn_started(session_id)
        if message.stop_reason:
            machine.turn_stopped(session_id, message.stop_reason)

        for block in message.content:
            if isinstance(block, ThinkingBlock):
                # Thinking after tools have finished is the final answer being written
                machine.set_thinking(
                    session_id, not (not state.active_tools and state.recent_tools)
                )
            elif isinstance(block, TextBlock):
                if TEXT_INTERRUPT_MARKER in block.text:
                    machine.interrupted(session_id)
                elif not state.active_tools and state.recent_tools:
                    machine.set_thinking(session_id, False)
            elif isinstance(block, ToolUseBlock):
                self._apply_tool_use(session_id, block, line)

        if message.usage is not None:
            machine.update_tokens(
                session_id,
                input_tokens=message.usage.input_tokens,
                output_tokens=message.usage.output_tokens,
                cache_read_tokens=message.usage.cache_read_input_tokens,
                cache_write_tokens=message.usage.cache_creation_input_tokens,
            )

        if message.role == "user":
            for block in message.content:
                if isinstance(block, ToolResultBlock):
                    self._apply_tool_result(session_id, block, line)

    def _apply_tool_use(self, session_id: str, block: ToolUseBlock, line: ClaudeLine) -> None:
        machine = self.machine
        machine.set_thinking(session_id, False)

        if block.name == "TodoWrite" and "todos" in block.input:
            machine.set_todos(session_id, parse_todos(block.input["todos"]))

        description = block.input.get("description")
        timeout = block.input.get("timeout")
        machine.tool_started(
            session_id,
            call_id=block.id,
            tool_name=block.name,
            start_time=line.timestamp,
            argument=extract_tool_argument(block.input),
            description=description if isinstance(description, str) else None,
            timeout=timeout if isinstance(timeout, int) else None,
        )

    def _apply_tool_result(self, session_id: str, block: ToolResultBlock, line: ClaudeLine) -> None:
        machine = self.machine
        machine.tool_completed(
            session_id,
            call_id=block.tool_use_id,
            end_time=line.timestamp,
            success=None if block.is_error is None else not block.is_error,
            output=truncate(block.content_text, 200) or None,
        )
        machine.set_thinking(session_id, True)
        if block.is_error and any(m in block.content_text for m in REJECTED_RESULT_MARKERS):
            machine.interrupted(session_id)
