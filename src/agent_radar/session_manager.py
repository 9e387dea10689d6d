"""Session discovery rescans and file watcher lifecycle for one source."""

import asyncio
import logging
from typing import Dict, List, Optional

from .hub import EventHub, LinesRead, SessionAttached, SessionDetached
from .models.session import SessionInfo
from .sources.base import SessionDiscovery
from .watchers import DirectoryWatchRegistry, SessionFileWatcher

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Keeps one file watcher per live session of a source.

    Features:
    - Periodic discovery rescan (off the event loop)
    - Watchers attached for new sessions, torn down for stale ones
    - Safety re-read of every watched file on each scan
    - Single-place teardown per session
    """

    def __init__(
        self,
        discovery: SessionDiscovery,
        hub: EventHub,
        registry: DirectoryWatchRegistry,
        scan_interval: float = 10.0,
        history_bytes: int = 50000,
        history_lines: int = 50,
    ):
        self.discovery = discovery
        self.source = discovery.source
        self.hub = hub
        self.registry = registry
        self.scan_interval = scan_interval
        self.history_bytes = history_bytes
        self.history_lines = history_lines
        self.watchers: Dict[str, SessionFileWatcher] = {}
        self._scan_task: Optional[asyncio.Task[None]] = None
        self._scan_lock = asyncio.Lock()

    def _on_lines(self, session_id: str, lines: List[str], replay: bool) -> None:
        if not lines and not replay:
            return
        self.hub.submit(
            LinesRead(source=self.source, session_id=session_id, lines=lines, replay=replay)
        )

    async def scan(self) -> int:
        """Reconcile watchers with what discovery finds. Returns the live session count."""
        async with self._scan_lock:
            sessions = await asyncio.to_thread(self.discovery.discover)
            current = {info.session_id: info for info in sessions}

            for session_id in [sid for sid in self.watchers if sid not in current]:
                await self.detach(session_id)

            for session_id, info in current.items():
                watcher = self.watchers.get(session_id)
                if watcher is None:
                    await self.attach(info)
                elif watcher.path != info.log_path:
                    logger.info(f"[{self.source.value}] Session {session_id[:8]} moved to {info.log_path}")
                    await self.detach(session_id)
                    await self.attach(info)
                else:
                    # Catch writes whose change notification was missed
                    try:
                        await watcher.read_new()
                    except OSError as e:
                        logger.warning(f"[{self.source.value}] Cannot read {watcher.path}: {e}")

            return len(self.watchers)

    async def attach(self, info: SessionInfo) -> bool:
        if info.session_id in self.watchers:
            return False

        # The hub is FIFO: the session exists before its first lines arrive
        self.hub.submit(SessionAttached(info=info))
        watcher = SessionFileWatcher(
            info.session_id,
            info.log_path,
            on_lines=self._on_lines,
            history_bytes=self.history_bytes,
            history_lines=self.history_lines,
        )
        self.watchers[info.session_id] = watcher
        try:
            await watcher.open()
            self.registry.watch(info.log_path, watcher.notify_changed)
        except OSError as e:
            logger.warning(f"[{self.source.value}] Cannot watch {info.log_path}: {e}")
            await self.detach(info.session_id)
            return False

        logger.info(f"[{self.source.value}] Watching {info.display_name}")
        return True

    async def detach(self, session_id: str) -> None:
        """Tear down everything keyed by ``session_id``."""
        watcher = self.watchers.pop(session_id, None)
        if watcher is not None:
            self.registry.unwatch(watcher.path)
            await watcher.close()
        self.hub.submit(SessionDetached(source=self.source, session_id=session_id))
        logger.info(f"[{self.source.value}] Detached session {session_id[:8]}")

    def get_session_count(self) -> int:
        return len(self.watchers)

    def start_scan_task(self) -> None:
        """Start background rescan task."""
        if self._scan_task is None:
            self._scan_task = asyncio.create_task(self._scan_loop())
            logger.info(f"[{self.source.value}] Session scan task started")

    async def _scan_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.scan_interval)
                await self.scan()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {self.source.value} scan loop: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop scanning and detach every session (shutdown)."""
        if self._scan_task:
            self._scan_task.cancel()
            try:
                await self._scan_task
            except asyncio.CancelledError:
                pass
            self._scan_task = None

        for session_id in list(self.watchers):
            await self.detach(session_id)
