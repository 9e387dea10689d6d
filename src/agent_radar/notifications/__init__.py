"""Hook notification socket, routing and client."""

from .client import send_notification
from .router import NotificationRouter
from .socket_server import NotificationSocketServer, decode_notification

__all__ = [
    "NotificationRouter",
    "NotificationSocketServer",
    "decode_notification",
    "send_notification",
]
