"""Permission-eligibility classification and pending permission checks."""

from datetime import datetime
from typing import Iterable

from pydantic import BaseModel


class PermissionPolicy:
    """
    Decides which tools are likely to block on user approval.

    The auto-approved deny-list wins, then plugin prefixes (always eligible),
    then the explicit eligible set. Everything else is not eligible.
    """

    def __init__(
        self,
        eligible: Iterable[str] = (),
        auto_approved: Iterable[str] = (),
        plugin_prefixes: Iterable[str] = (),
    ):
        self.eligible = frozenset(eligible)
        self.auto_approved = frozenset(auto_approved)
        self.plugin_prefixes = tuple(plugin_prefixes)

    def is_eligible(self, tool_name: str) -> bool:
        if tool_name in self.auto_approved:
            return False
        if self.plugin_prefixes and tool_name.startswith(self.plugin_prefixes):
            return True
        return tool_name in self.eligible


class PendingPermissionCheck(BaseModel):
    """
    One armed check: armed -> escalated -> removed (resolved or forced).

    ``escalated`` is set the first time the check outlives the delay while
    its tool is still active; the session's needs-permission flag is derived
    from escalated checks only.
    """

    session_id: str
    call_id: str
    tool_name: str
    armed_at: datetime
    escalated: bool = False
