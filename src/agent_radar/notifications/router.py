"""Applies hook notifications to the session state machines."""

import logging
from typing import Iterable, Optional, Tuple

from ..models.notifications import Notification, NotificationType
from ..state.machine import SessionStateMachine

logger = logging.getLogger(__name__)

ELICITATION_TOOL = "AskUserQuestion"


class NotificationRouter:
    """
    Routes a notification to the session it describes.

    Permission prompts and elicitation dialogs escalate a permission check
    of the matching session; idle prompts and stop hooks end its turn.
    Sessions are matched by id first, then by working directory.
    """

    def __init__(self, machines: Iterable[SessionStateMachine]):
        self.machines = list(machines)
        self.unmatched = 0

    def locate(self, notification: Notification) -> Optional[Tuple[SessionStateMachine, str]]:
        for machine in self.machines:
            if notification.session_id and machine.has_session(notification.session_id):
                return machine, notification.session_id
        if notification.cwd:
            for machine in self.machines:
                session_id = machine.find_session(cwd=notification.cwd)
                if session_id:
                    return machine, session_id
        return None

    def route(self, notification: Notification) -> bool:
        """Apply ``notification``. Returns True if any state changed."""
        kind = notification.notification_type
        if kind in (NotificationType.AUTH_SUCCESS, NotificationType.UNKNOWN):
            logger.info(f"Notification {kind.value}: {notification.message or ''}".rstrip())
            return False

        match = self.locate(notification)
        if match is None:
            self.unmatched += 1
            logger.debug(
                f"No session for {kind.value} notification "
                f"(session={notification.session_id}, cwd={notification.cwd})"
            )
            return False

        machine, session_id = match
        if kind == NotificationType.PERMISSION_PROMPT:
            changed = machine.escalate_permission(session_id, notification.tool_name)
        elif kind == NotificationType.ELICITATION_DIALOG:
            changed = machine.escalate_permission(
                session_id, notification.tool_name or ELICITATION_TOOL
            )
        else:
            machine.end_turn(session_id)
            changed = True

        if changed:
            logger.info(f"Session {session_id[:8]}: {kind.value}")
            machine.commit()
        return changed
