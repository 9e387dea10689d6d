"""Filesystem watching for session log files."""

from .registry import DirectoryWatchRegistry
from .session_file import SessionFileWatcher, split_complete_lines

__all__ = ["DirectoryWatchRegistry", "SessionFileWatcher", "split_complete_lines"]
