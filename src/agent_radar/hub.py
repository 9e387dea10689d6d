"""The single serialization point between I/O contexts and owned state."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from .models.notifications import Notification
from .models.session import SessionInfo, SessionSource
from .models.telemetry import GatewayRequest

logger = logging.getLogger(__name__)


class HubEvent(BaseModel):
    model_config = ConfigDict(frozen=True)


class TelemetryReceived(HubEvent):
    request: GatewayRequest


class NotificationReceived(HubEvent):
    notification: Notification


class LinesRead(HubEvent):
    source: SessionSource
    session_id: str
    lines: List[str] = Field(default_factory=list)
    replay: bool = False


class SessionAttached(HubEvent):
    info: SessionInfo


class SessionDetached(HubEvent):
    source: SessionSource
    session_id: str


EventHandler = Callable[[Any], Union[None, Awaitable[None]]]

_STOP = object()


class EventHub:
    """
    FIFO queue drained by exactly one task.

    Listeners and watchers only ``submit`` fully decoded events; handlers
    registered per event type run one at a time on the drain task, so
    state owned by the handlers never sees interleaved updates.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._handlers: Dict[Type[HubEvent], List[EventHandler]] = {}
        self._task: Optional["asyncio.Task[None]"] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.events_processed = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def register(self, event_type: Type[HubEvent], handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def submit(self, event: HubEvent) -> None:
        """Enqueue from the loop thread."""
        self._queue.put_nowait(event)

    def submit_threadsafe(self, event: HubEvent) -> None:
        """Enqueue from any other thread."""
        if self._loop is None:
            raise RuntimeError("Event hub is not running")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def start(self) -> None:
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._run())
        logger.debug("Event hub started")

    async def stop(self) -> None:
        """Process what is already queued, then stop the drain task."""
        if not self.is_running:
            return
        self._queue.put_nowait(_STOP)
        assert self._task is not None
        await self._task
        self._task = None
        logger.debug(f"Event hub stopped after {self.events_processed} events")

    async def join(self) -> None:
        """Wait until every submitted event has been handled."""
        await self._queue.join()

    async def _dispatch(self, event: HubEvent) -> None:
        handlers = self._handlers.get(type(event))
        if not handlers:
            logger.debug(f"No handler for {type(event).__name__}")
            return
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler for {type(event).__name__} failed: {e}", exc_info=True)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is _STOP:
                    break
                await self._dispatch(event)
                self.events_processed += 1
            finally:
                self._queue.task_done()
