"""Codex: session discovery and rollout line normalization."""

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import DecodeError
from ..models.codex_lines import (
    AgentReasoningEvent,
    CodexLine,
    EventMsgLine,
    FunctionCallItem,
    FunctionCallOutputItem,
    MessageItem,
    ResponseItemLine,
    SessionMetaLine,
    TaskCompleteEvent,
    TokenCountEvent,
    TurnAbortedEvent,
    TurnContextLine,
    decode_codex_line,
)
from ..models.session import SessionInfo, SessionSource
from ..state.machine import STOP_END_TURN
from .base import LineNormalizer, SessionDiscovery, is_recent, read_head, truncate

logger = logging.getLogger(__name__)

HEAD_BYTES = 10 * 1024
EXIT_CODE_PATTERN = re.compile(r"^Exit code: (\d+)")


def extract_tool_argument(args: Dict[str, Any]) -> Optional[str]:
    command = args.get("command")
    if isinstance(command, list):
        command = " ".join(str(part) for part in command)
    if isinstance(command, str):
        return truncate(command, 80)
    if isinstance(args.get("content"), str):
        return truncate(args["content"], 80)
    if isinstance(args.get("path"), str):
        return os.path.basename(args["path"])
    return None


def parse_tool_output(text: str) -> Tuple[str, Optional[int]]:
    """
    Split a function call output into display text and exit code.

    Codex writes either plain text prefixed with ``Exit code: N`` or a JSON
    document with ``output`` and ``metadata.exit_code``.
    """
    match = EXIT_CODE_PATTERN.match(text)
    if match:
        return text, int(match.group(1))

    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text, None
    if not isinstance(parsed, dict):
        return text, None

    output = parsed.get("output")
    metadata = parsed.get("metadata")
    exit_code = metadata.get("exit_code") if isinstance(metadata, dict) else None
    return (
        output if isinstance(output, str) else text,
        exit_code if isinstance(exit_code, int) else None,
    )


class CodexDiscovery(SessionDiscovery):
    """
    Finds live Codex rollouts.

    Structure:
        ~/.codex/sessions/YYYY/MM/DD/rollout-*.jsonl
    """

    source = SessionSource.CODEX

    def __init__(self, codex_home: Path, recency_window: float = 300.0):
        super().__init__(recency_window)
        self.sessions_dir = codex_home / "sessions"

    def parse_session_file(self, path: Path) -> SessionInfo:
        """Identity from the first session_meta line, or the file name when there is none."""
        for text in read_head(path, HEAD_BYTES):
            try:
                line = decode_codex_line(text)
            except DecodeError:
                continue
            if not isinstance(line, SessionMetaLine):
                continue
            meta = line.payload
            git = meta.git
            return SessionInfo(
                session_id=meta.id,
                source=self.source,
                log_path=path,
                cwd=meta.cwd,
                cli_version=meta.cli_version,
                model_provider=meta.model_provider or "openai",
                git_branch=git.branch if git else None,
                git_commit=git.commit_hash if git else None,
                started_at=line.timestamp or meta.timestamp,
            )

        logger.debug(f"No session_meta in {path.name}, using file name as id")
        return SessionInfo(session_id=path.stem, source=self.source, log_path=path)

    def discover(self) -> List[SessionInfo]:
        if not self.sessions_dir.is_dir():
            return []
        now = time.time()
        sessions = [
            self.parse_session_file(path)
            for path in self.sessions_dir.glob("*/*/*/rollout-*.jsonl")
            if is_recent(path, self.recency_window, now)
        ]
        sessions.sort(key=lambda s: s.started_at.timestamp() if s.started_at else 0, reverse=True)
        return sessions


class CodexNormalizer(LineNormalizer):
    """Applies Codex rollout lines to the Codex state machine."""

    source = SessionSource.CODEX

    def decode(self, line: str) -> CodexLine:
        return decode_codex_line(line)

    def apply(self, session_id: str, line: CodexLine) -> None:
        machine = self.machine

        if isinstance(line, SessionMetaLine):
            meta = line.payload
            machine.update_info(
                session_id,
                cwd=meta.cwd,
                cli_version=meta.cli_version,
                model_provider=meta.model_provider,
                git_branch=meta.git.branch if meta.git else None,
                git_commit=meta.git.commit_hash if meta.git else None,
            )
        elif isinstance(line, TurnContextLine):
            machine.update_info(session_id, model=line.payload.model, cwd=line.payload.cwd)
        elif isinstance(line, EventMsgLine):
            self._apply_event(session_id, line)
        elif isinstance(line, ResponseItemLine):
            self._apply_item(session_id, line)

    def _apply_event(self, session_id: str, line: EventMsgLine) -> None:
        machine = self.machine
        event = line.payload

        if isinstance(event, TokenCountEvent):
            totals = event.info.total_token_usage if event.info else None
            if totals is not None:
                machine.update_tokens(
                    session_id,
                    input_tokens=totals.input_tokens or 0,
                    cache_read_tokens=totals.cached_input_tokens or 0,
                    output_tokens=totals.output_tokens or 0,
                    reasoning_tokens=totals.reasoning_output_tokens or 0,
                    reported_total=totals.total_tokens or 0,
                    context_window=event.info.model_context_window,
                )
            primary = event.rate_limits.primary if event.rate_limits else None
            if primary is not None:
                machine.update_tokens(session_id, rate_limit_percent=primary.used_percent)
        elif isinstance(event, AgentReasoningEvent):
            machine.set_thinking(session_id, True)
            machine.set_reasoning(session_id, event.text)
        elif isinstance(event, TurnAbortedEvent):
            machine.interrupted(session_id)
        elif isinstance(event, TaskCompleteEvent):
            machine.turn_stopped(session_id, STOP_END_TURN)

    def _apply_item(self, session_id: str, line: ResponseItemLine) -> None:
        machine = self.machine
        item = line.payload

        if isinstance(item, FunctionCallItem):
            machine.set_thinking(session_id, False)
            args = item.parsed_arguments()
            workdir = args.get("workdir")
            machine.tool_started(
                session_id,
                call_id=item.call_id,
                tool_name=item.name,
                start_time=line.timestamp,
                argument=extract_tool_argument(args),
                workdir=workdir if isinstance(workdir, str) else None,
            )
        elif isinstance(item, FunctionCallOutputItem):
            output, exit_code = parse_tool_output(item.output_text)
            machine.tool_completed(
                session_id,
                call_id=item.call_id,
                end_time=line.timestamp,
                success=None if exit_code is None else exit_code == 0,
                output=truncate(output, 200) or None,
                exit_code=exit_code,
            )
            machine.set_thinking(session_id, True)
        elif isinstance(item, MessageItem):
            if item.role == "user":
                machine.turn_started(session_id)
            elif item.role == "assistant" and item.has_output_text:
                machine.set_thinking(session_id, False)
