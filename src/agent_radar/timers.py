"""Cancellable timer slots on the asyncio event loop."""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CancellableTimer:
    """
    One logical timer slot (idle, tool-idle, permission scan, ...).

    The slot is created once and re-armed for every use. Arming always
    cancels the previous instance first, and every arm/cancel bumps a
    generation token so a callback already queued by the loop for an older
    instance is dropped instead of running alongside the newer one.

    Callbacks run on the event loop thread and must re-check the state they
    act on; nothing about the arm-time state is carried into the callback.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], None],
        delay: float,
        repeat: bool = False,
    ):
        self.name = name
        self.delay = delay
        self.repeat = repeat
        self.fire_count = 0
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._generation = 0

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def generation(self) -> int:
        return self._generation

    def arm(self, delay: Optional[float] = None) -> None:
        """(Re)start the timer; any pending instance is cancelled first."""
        self.cancel()
        loop = asyncio.get_running_loop()
        generation = self._generation
        self._handle = loop.call_later(
            self.delay if delay is None else delay, self._fire, generation
        )

    def ensure_armed(self) -> None:
        """Arm only if not already running (used by repeating scans)."""
        if not self.armed:
            self.arm()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._generation += 1

    def _fire(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._handle = None
        self.fire_count += 1
        try:
            self._callback()
        except Exception as e:
            logger.error(f"Timer '{self.name}' callback failed: {e}", exc_info=True)

        # Re-arm unless the callback cancelled or re-armed the slot itself
        if self.repeat and self._handle is None and generation == self._generation:
            self.arm()

    def __repr__(self) -> str:
        return f"CancellableTimer({self.name!r}, delay={self.delay}, armed={self.armed})"
