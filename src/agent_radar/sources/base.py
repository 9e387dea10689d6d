"""Shared plumbing for per-source log line normalizers and session discovery."""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from ..exceptions import DecodeError
from ..models.session import SessionInfo, SessionSource
from ..state.machine import SessionStateMachine

logger = logging.getLogger(__name__)


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value if len(value) <= limit else value[:limit]


def is_recent(path: Path, window: float, now: Optional[float] = None) -> bool:
    """True if ``path`` was modified within ``window`` seconds."""
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return False
    return (now if now is not None else time.time()) - mtime <= window


def read_head(path: Path, limit: int) -> List[str]:
    """First complete lines within ``limit`` bytes of a file."""
    try:
        with open(path, "rb") as f:
            data = f.read(limit)
    except OSError as e:
        logger.debug(f"Cannot read head of {path}: {e}")
        return []
    cut = data.rfind(b"\n")
    if cut >= 0:
        data = data[: cut + 1]
    return [line for line in data.decode("utf-8", errors="replace").split("\n") if line.strip()]


class SessionDiscovery(ABC):
    """Finds the live log files of one source."""

    source: SessionSource = SessionSource.UNKNOWN

    def __init__(self, recency_window: float = 300.0):
        self.recency_window = recency_window

    @abstractmethod
    def discover(self) -> List[SessionInfo]:
        """Blocking filesystem scan; run it off the event loop."""


class LineNormalizer(ABC):
    """
    Maps one source's log lines onto the state machine's abstract operations.

    Lines of one file arrive in batches, in file order. A batch is applied
    as a single transaction: the machine commits once at the end.
    """

    source: SessionSource = SessionSource.UNKNOWN

    # Any live write to the log means the agent is producing output
    activity_implies_thinking = False

    def __init__(self, machine: SessionStateMachine):
        self.machine = machine
        self.lines_applied = 0
        self.lines_rejected = 0

    @abstractmethod
    def decode(self, line: str) -> Any:
        """Decode one line into a tagged variant; raise DecodeError on garbage."""

    @abstractmethod
    def apply(self, session_id: str, line: Any) -> None:
        """Apply one decoded line."""

    @staticmethod
    def line_time(line: Any) -> Optional[datetime]:
        return getattr(line, "timestamp", None)

    def apply_lines(self, session_id: str, lines: List[str], replay: bool = False) -> int:
        if not self.machine.has_session(session_id):
            logger.debug(f"Lines for unknown {self.source.value} session {session_id[:8]}, dropping")
            return 0

        if replay:
            self.machine.begin_replay(session_id)
        elif self.activity_implies_thinking:
            self.machine.set_thinking(session_id, True)

        applied = 0
        last_time: Optional[datetime] = None
        for text in lines:
            text = text.strip()
            if not text:
                continue
            try:
                decoded = self.decode(text)
            except DecodeError as e:
                self.lines_rejected += 1
                logger.debug(f"[{self.source.value}] Skipping line: {e.message}")
                continue
            self.apply(session_id, decoded)
            last_time = self.line_time(decoded) or last_time
            applied += 1

        self.lines_applied += applied
        if replay:
            self.machine.end_replay(session_id)
        if applied and not replay:
            self.machine.mark_activity(session_id)
        elif applied and last_time is not None:
            state = self.machine.get_state(session_id)
            if state is not None:
                state.last_update = last_time
        self.machine.commit()
        return applied
