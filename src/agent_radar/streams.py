"""Bounded reads with timeouts, shared by the HTTP and Unix socket listeners."""

import asyncio
import logging

from .exceptions import ReadTimeoutError, StreamClosedError, TransportError

logger = logging.getLogger(__name__)


class BoundedReader:
    """
    Wraps an ``asyncio.StreamReader`` so no read can wedge a handler.

    Every operation is bounded either by a timeout or by an attempt budget,
    and failures surface as ``TransportError`` subclasses.
    """

    def __init__(self, reader: asyncio.StreamReader, timeout: float = 10.0):
        self.reader = reader
        self.timeout = timeout

    async def read_until(self, separator: bytes) -> bytes:
        """Read up to and including ``separator`` (bounded by the reader's limit)."""
        try:
            return await asyncio.wait_for(self.reader.readuntil(separator), self.timeout)
        except asyncio.TimeoutError:
            raise ReadTimeoutError(f"No {separator!r} within {self.timeout}s")
        except asyncio.IncompleteReadError as e:
            raise StreamClosedError(expected=len(e.partial) + len(separator), received=len(e.partial))
        except asyncio.LimitOverrunError as e:
            raise TransportError(
                f"Separator not found within {e.consumed} bytes", code="header_too_large"
            )

    async def read_exactly(self, size: int) -> bytes:
        """Read exactly ``size`` bytes, across as many partial reads as it takes."""
        if size <= 0:
            return b""
        try:
            return await asyncio.wait_for(self.reader.readexactly(size), self.timeout)
        except asyncio.TimeoutError:
            raise ReadTimeoutError(f"Body of {size} bytes not received within {self.timeout}s")
        except asyncio.IncompleteReadError as e:
            raise StreamClosedError(expected=size, received=len(e.partial))

    async def drain(
        self,
        max_attempts: int = 10,
        idle_sleep: float = 0.05,
        busy_sleep: float = 0.01,
        chunk_size: int = 4096,
    ) -> bytes:
        """
        Collect bytes until the peer closes or the attempt budget runs out.

        Each empty wait costs one attempt; the counter resets whenever data
        arrives. Waits are ``idle_sleep`` while nothing is buffered and
        ``busy_sleep`` once a partial message is in hand.
        """
        buffer = bytearray()
        attempts = 0
        while attempts < max_attempts:
            wait = busy_sleep if buffer else idle_sleep
            try:
                chunk = await asyncio.wait_for(self.reader.read(chunk_size), wait)
            except asyncio.TimeoutError:
                attempts += 1
                continue
            if not chunk:
                break
            buffer.extend(chunk)
            attempts = 0

        if attempts >= max_attempts:
            logger.debug(f"Read budget exhausted with {len(buffer)} bytes buffered")
        return bytes(buffer)
