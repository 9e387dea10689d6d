"""Session state machines, permission policy and the published state surface."""

from .machine import SessionStateMachine
from .permissions import PendingPermissionCheck, PermissionPolicy
from .published import PublishedState

__all__ = [
    "SessionStateMachine",
    "PendingPermissionCheck",
    "PermissionPolicy",
    "PublishedState",
]
