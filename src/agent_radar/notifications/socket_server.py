"""Unix domain socket listener for agent hook notifications."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Callable, List, Optional, Set

from pydantic import ValidationError

from ..exceptions import AgentRadarError, BindError, DecodeError, TransportError
from ..models.notifications import Notification
from ..streams import BoundedReader
from ..types import ErrorCallback

logger = logging.getLogger(__name__)

SOCKET_MODE = 0o777


def decode_notification(line: str) -> Notification:
    """
    Decode one newline-delimited notification object.

    Raises:
        DecodeError: If the line is not JSON or lacks a notification_type
    """
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid notification JSON: {e.msg}", detail=line)
    if not isinstance(raw, dict):
        raise DecodeError("Notification is not an object", detail=line)
    try:
        return Notification.model_validate(raw)
    except ValidationError as e:
        raise DecodeError(f"Malformed notification: {e.error_count()} errors", detail=line)


def split_notifications(data: bytes) -> List[str]:
    text = data.decode("utf-8", errors="replace")
    return [line for line in text.split("\n") if line.strip()]


class NotificationSocketServer:
    """
    Accepts hook connections on a Unix socket.

    Each client writes one or more JSON lines and closes. The server drains
    the connection within a bounded attempt budget, decodes every line
    independently and hands good ones to ``on_notification``; bad lines are
    reported and skipped.
    """

    def __init__(
        self,
        path: str,
        on_notification: Callable[[Notification], None],
        on_error: Optional[ErrorCallback] = None,
        read_attempts: int = 10,
        idle_sleep: float = 0.05,
        busy_sleep: float = 0.01,
    ):
        self.path = path
        self.read_attempts = read_attempts
        self.idle_sleep = idle_sleep
        self.busy_sleep = busy_sleep
        self._on_notification = on_notification
        self._on_error = on_error
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set["asyncio.Task[None]"] = set()
        self.notifications_received = 0

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def _unlink(self) -> None:
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove socket {self.path}: {e}")

    async def start(self) -> bool:
        """Bind the socket, replacing a stale file. Returns False if binding failed."""
        if self._server is not None:
            logger.debug("Notification socket already running")
            return True

        self._unlink()
        try:
            self._server = await asyncio.start_unix_server(self._handle_connection, path=self.path)
            # Hooks may run as another user
            os.chmod(self.path, SOCKET_MODE)
        except OSError as e:
            self._report(BindError(self.path, str(e)))
            if self._server is not None:
                self._server.close()
                self._server = None
            return False

        logger.info(f"Notification socket listening on {self.path}")
        return True

    async def stop(self) -> None:
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        for task in list(self._connections):
            task.cancel()
        await server.wait_closed()
        if Path(self.path).exists():
            self._unlink()
        logger.info("Notification socket stopped")

    def _report(self, error: AgentRadarError) -> None:
        if self._on_error:
            self._on_error(error)
        else:
            logger.warning(f"Notification socket: {error.message} {error.detail}".rstrip())

    def process_data(self, data: bytes) -> int:
        """Decode and deliver every line in ``data``. Returns how many were delivered."""
        delivered = 0
        for line in split_notifications(data):
            try:
                notification = decode_notification(line)
            except DecodeError as e:
                self._report(e)
                continue
            self.notifications_received += 1
            logger.debug(
                f"[NOTIFY] {notification.notification_type.value} "
                f"session={notification.session_id or '-'}"
            )
            self._on_notification(notification)
            delivered += 1
        return delivered

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            data = await BoundedReader(reader).drain(
                max_attempts=self.read_attempts,
                idle_sleep=self.idle_sleep,
                busy_sleep=self.busy_sleep,
            )
            if data:
                self.process_data(data)
        except (ConnectionError, OSError) as e:
            self._report(TransportError(f"Connection error: {e}", code="connection_error"))
        finally:
            if task is not None:
                self._connections.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Notification connection closed uncleanly: {e}")
