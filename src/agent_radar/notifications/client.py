"""Hook-side client: forwards one notification to the running service."""

import json
import logging
import socket

logger = logging.getLogger(__name__)


def send_notification(payload: str, path: str, timeout: float = 2.0) -> bool:
    """
    Write ``payload`` as a single line to the notification socket.

    Returns False instead of raising when the service is not running, so a
    calling hook never fails because of it.
    """
    text = payload.strip()
    if not text:
        return False
    try:
        # Collapse pretty-printed input to one line
        text = json.dumps(json.loads(text), separators=(",", ":"))
    except json.JSONDecodeError:
        logger.debug("Notification payload is not JSON, sending as-is")

    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(path)
            sock.sendall(text.encode("utf-8") + b"\n")
    except OSError as e:
        logger.debug(f"Could not deliver notification to {path}: {e}")
        return False
    return True
