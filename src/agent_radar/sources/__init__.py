from .base import LineNormalizer, SessionDiscovery
from .claude import ClaudeDiscovery, ClaudeNormalizer
from .codex import CodexDiscovery, CodexNormalizer

__all__ = [
    "LineNormalizer",
    "SessionDiscovery",
    "ClaudeDiscovery",
    "ClaudeNormalizer",
    "CodexDiscovery",
    "CodexNormalizer",
]
