"""Shared watchdog observer for session log directories."""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], None]


class SessionDirectoryHandler(FileSystemEventHandler):
    """Dispatches events in one directory to the callbacks of watched files."""

    def __init__(self):
        super().__init__()
        self.callbacks: Dict[str, ChangeCallback] = {}
        self._lock = threading.Lock()

    def add(self, path: Path, callback: ChangeCallback) -> None:
        with self._lock:
            self.callbacks[str(path)] = callback

    def remove(self, path: Path) -> int:
        """Forget ``path``; returns how many files remain watched."""
        with self._lock:
            self.callbacks.pop(str(path), None)
            return len(self.callbacks)

    def _dispatch(self, src_path: str) -> None:
        with self._lock:
            callback = self.callbacks.get(src_path)
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            logger.error(f"Change callback for {src_path} failed: {e}", exc_info=True)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._dispatch(str(event.src_path))

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._dispatch(str(event.src_path))

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self._dispatch(str(event.dest_path))


class DirectoryWatchRegistry:
    """
    One watchdog ``Observer`` for every watched session file.

    Directories are scheduled on first use and unscheduled when their last
    file is unwatched. Callbacks run on the observer thread; they must only
    hand off to the event loop.
    """

    def __init__(self):
        self.observer: Optional[Observer] = None
        self._handlers: Dict[Path, SessionDirectoryHandler] = {}
        self._watches: Dict[Path, ObservedWatch] = {}
        self.running = False

    def start(self) -> None:
        if self.running:
            logger.warning("Directory watcher already running")
            return
        self.observer = Observer()
        self.observer.start()
        self.running = True
        logger.info("Directory watcher started")

    def stop(self) -> None:
        if not self.running:
            return
        logger.info("Stopping directory watcher")
        if self.observer:
            self.observer.stop()
            self.observer.join()
        self.observer = None
        self._handlers.clear()
        self._watches.clear()
        self.running = False

    def watch(self, path: Path, callback: ChangeCallback) -> None:
        """Call ``callback`` whenever ``path`` is written, created or moved into place."""
        if not self.running or self.observer is None:
            raise RuntimeError("Directory watcher is not running")
        directory = path.parent
        handler = self._handlers.get(directory)
        if handler is None:
            handler = SessionDirectoryHandler()
            self._handlers[directory] = handler
            self._watches[directory] = self.observer.schedule(
                handler, path=str(directory), recursive=False
            )
            logger.debug(f"Watching directory {directory}")
        handler.add(path, callback)

    def unwatch(self, path: Path) -> None:
        directory = path.parent
        handler = self._handlers.get(directory)
        if handler is None:
            return
        if handler.remove(path) > 0:
            return

        del self._handlers[directory]
        watch = self._watches.pop(directory, None)
        if watch is not None and self.observer is not None:
            try:
                self.observer.unschedule(watch)
            except KeyError:
                logger.debug(f"Watch for {directory} already gone")
        logger.debug(f"Stopped watching directory {directory}")

    @property
    def watched_directories(self) -> int:
        return len(self._handlers)
