"""Incremental reader for one append-only JSONL session log."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

# (session_id, lines, replay)
LinesCallback = Callable[[str, List[str], bool], None]


def split_complete_lines(data: bytes) -> Tuple[List[str], int]:
    """
    Split ``data`` into complete lines.

    Returns the non-empty lines and the number of bytes consumed; a trailing
    partial line is left for the next read.
    """
    cut = data.rfind(b"\n")
    if cut < 0:
        return [], 0
    text = data[: cut + 1].decode("utf-8", errors="replace")
    return [line for line in text.split("\n") if line.strip()], cut + 1


class SessionFileWatcher:
    """
    Tails one session log file.

    ``open()`` replays a bounded history tail with the replay flag set and
    leaves the offset at the end of the last complete line. Every change
    notification then reads the bytes appended since that offset. Reads are
    serialised so lines reach ``on_lines`` in file order.
    """

    def __init__(
        self,
        session_id: str,
        path: Path,
        on_lines: LinesCallback,
        history_bytes: int = 50000,
        history_lines: int = 50,
    ):
        self.session_id = session_id
        self.path = path
        self.history_bytes = history_bytes
        self.history_lines = history_lines
        self.offset = 0
        self.lines_read = 0
        self._on_lines = on_lines
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._dirty = False
        self._reader: Optional["asyncio.Task[None]"] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._loop is not None and not self._closed

    async def open(self) -> None:
        """Replay recent history, then start tailing from the end of it."""
        self._loop = asyncio.get_running_loop()
        async with self._lock:
            size = (await aiofiles.os.stat(self.path)).st_size
            start = max(0, size - self.history_bytes)
            # One byte before the window tells whether it opens on a line boundary
            lead = 1 if start > 0 else 0
            async with aiofiles.open(self.path, "rb") as f:
                await f.seek(start - lead)
                data = await f.read(size - start + lead)
            cut = lead > 0 and data[:1] != b"\n"
            data = data[lead:]

            lines, consumed = split_complete_lines(data)
            self.offset = start + consumed
            if cut and lines and not data.startswith(b"\n"):
                lines = lines[1:]
            lines = lines[-self.history_lines:] if self.history_lines > 0 else []

        logger.debug(
            f"Opened {self.path.name}: replaying {len(lines)} lines, offset {self.offset}"
        )
        self._on_lines(self.session_id, lines, True)

    async def read_new(self) -> int:
        """Read complete lines appended since the last read. Returns how many."""
        if self._closed:
            return 0
        async with self._lock:
            try:
                size = (await aiofiles.os.stat(self.path)).st_size
            except FileNotFoundError:
                logger.debug(f"{self.path.name} disappeared")
                return 0
            if size < self.offset:
                logger.info(f"{self.path.name} was truncated, reading from the start")
                self.offset = 0
            if size == self.offset:
                return 0

            async with aiofiles.open(self.path, "rb") as f:
                await f.seek(self.offset)
                data = await f.read(size - self.offset)
            lines, consumed = split_complete_lines(data)
            self.offset += consumed

        if lines:
            self.lines_read += len(lines)
            self._on_lines(self.session_id, lines, False)
        return len(lines)

    def notify_changed(self) -> None:
        """Thread-safe change notification; bursts coalesce into one read."""
        if self._loop is None or self._closed:
            return
        self._loop.call_soon_threadsafe(self._mark_dirty)

    def _mark_dirty(self) -> None:
        if self._closed:
            return
        self._dirty = True
        if self._reader is None or self._reader.done():
            self._reader = asyncio.create_task(self._drain_changes())

    async def _drain_changes(self) -> None:
        while self._dirty and not self._closed:
            self._dirty = False
            try:
                await self.read_new()
            except Exception as e:
                logger.error(f"Error reading {self.path}: {e}", exc_info=True)

    async def close(self) -> None:
        self._closed = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None
