"""WebSocket subscriber management."""

import asyncio
import json
import logging
import uuid
from typing import Dict, Optional

from fastapi import WebSocket

from .exceptions import ConnectionLimitError
from .models.state import StateSnapshot
from .types import SnapshotMessageDict, WebSocketMessage

logger = logging.getLogger(__name__)


def snapshot_message(snapshot: StateSnapshot) -> SnapshotMessageDict:
    return {
        "type": "snapshot",
        "version": snapshot.version,
        "any_active": snapshot.any_active,
        "state": snapshot.model_dump(mode="json"),
    }


class ConnectionManager:
    """
    Pushes every published state version to WebSocket subscribers.

    Features:
    - Connection limits
    - One bounded outbound queue per subscriber (oldest dropped when full)
    - One sender task per subscriber, so a slow client never blocks a commit
    - Debug message logging
    """

    def __init__(self, max_connections: int = 20, queue_size: int = 16):
        self.max_connections = max_connections
        self.queue_size = queue_size
        self.active_connections: Dict[str, WebSocket] = {}
        self.message_queues: Dict[str, "asyncio.Queue[WebSocketMessage]"] = {}
        self.sender_tasks: Dict[str, "asyncio.Task[None]"] = {}
        self.messages_dropped = 0

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> str:
        """
        Accept a subscriber.

        Returns:
            The id the connection is tracked under

        Raises:
            ConnectionLimitError: If max connections reached
        """
        if len(self.active_connections) >= self.max_connections:
            logger.warning("Connection limit reached")
            await websocket.close(code=1008, reason="Server at capacity")
            raise ConnectionLimitError(self.max_connections)

        await websocket.accept()
        client_id = client_id or str(uuid.uuid4())
        self.active_connections[client_id] = websocket
        self.message_queues[client_id] = asyncio.Queue(maxsize=self.queue_size)
        self.sender_tasks[client_id] = asyncio.create_task(self._sender_loop(client_id))
        logger.info(
            f"WebSocket connected: {client_id[:8]} (total: {len(self.active_connections)})"
        )
        return client_id

    def disconnect(self, client_id: str) -> None:
        """Remove connection and cancel its sender."""
        if self.active_connections.pop(client_id, None) is None:
            return
        sender = self.sender_tasks.pop(client_id, None)
        if sender and sender is not asyncio.current_task():
            sender.cancel()
        self.message_queues.pop(client_id, None)
        logger.info(f"WebSocket disconnected: {client_id[:8]}")

    def enqueue(self, client_id: str, message: WebSocketMessage) -> bool:
        queue = self.message_queues.get(client_id)
        if queue is None:
            return False
        if queue.full():
            queue.get_nowait()
            self.messages_dropped += 1
            logger.debug(f"[WS OUT] {client_id[:8]} | queue full, dropped oldest")
        queue.put_nowait(message)
        return True

    def publish(self, snapshot: StateSnapshot) -> None:
        """Published state observer: fan the new version out to every subscriber."""
        if not self.active_connections:
            return
        message = snapshot_message(snapshot)
        for client_id in list(self.message_queues):
            self.enqueue(client_id, message)

    async def send_message(self, client_id: str, message: WebSocketMessage) -> bool:
        """
        Send JSON message to one subscriber with debug logging.

        Returns:
            True if message was sent successfully, False otherwise
        """
        websocket = self.active_connections.get(client_id)
        if not websocket:
            logger.warning(f"Attempted to send to non-existent connection: {client_id}")
            return False

        try:
            msg_type = message.get("type", "unknown")
            logger.debug(f"[WS OUT] {client_id[:8]} | {msg_type} | {json.dumps(message)[:200]}")
            await websocket.send_json(message)
            return True
        except RuntimeError as e:
            # Starlette raises RuntimeError once the socket is already closed
            logger.warning(f"Cannot send message to {client_id[:8]}: {e}")
            self.disconnect(client_id)
            return False
        except Exception as e:
            logger.error(f"Error sending message to {client_id[:8]}: {e}")
            self.disconnect(client_id)
            return False

    async def _sender_loop(self, client_id: str) -> None:
        try:
            while True:
                queue = self.message_queues.get(client_id)
                if queue is None:
                    break
                message = await queue.get()
                if not await self.send_message(client_id, message):
                    break
        except asyncio.CancelledError:
            logger.debug(f"Sender task cancelled for {client_id[:8]}")

    def get_connection_count(self) -> int:
        """Get number of active connections."""
        return len(self.active_connections)

    async def close_all(self) -> None:
        for client_id, websocket in list(self.active_connections.items()):
            self.disconnect(client_id)
            try:
                await websocket.close(code=1001, reason="Server shutting down")
            except RuntimeError:
                logger.debug(f"Connection {client_id[:8]} already closed")
