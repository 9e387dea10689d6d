"""Minimal OTLP/HTTP ingest listener.

One request per connection: read the head, read exactly Content-Length body
bytes, inflate gzip bodies, hand ``GatewayRequest`` to the owner, answer
200 and close. Decoding happens downstream; the gateway acknowledges every
complete request regardless of what it contains.
"""

import asyncio
import gzip
import logging
import zlib
from typing import Callable, Dict, Optional, Set, Tuple

from ..exceptions import AgentRadarError, BindError, DecodeError, TransportError
from ..models.telemetry import GatewayRequest, GatewayRoute
from ..streams import BoundedReader
from ..types import ErrorCallback

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
HEADER_TERMINATOR = b"\r\n\r\n"
OK_RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"


def inflate_body(body: bytes, content_encoding: Optional[str] = None) -> bytes:
    """Gunzip when the header says gzip or the magic bytes do; otherwise return as-is."""
    declared = content_encoding is not None and "gzip" in content_encoding
    if not declared and not body.startswith(GZIP_MAGIC):
        return body
    try:
        return gzip.decompress(body)
    except (OSError, EOFError, zlib.error) as e:
        logger.warning(f"Failed to gunzip {len(body)} byte body, using raw bytes: {e}")
        return body


def parse_request_head(head: bytes) -> Tuple[str, str, Dict[str, str]]:
    """
    Split an HTTP/1.x request head into method, path and lower-cased headers.

    Raises:
        DecodeError: If the request line is not ``METHOD PATH VERSION``
    """
    text = head.decode("latin-1")
    lines = text.split("\r\n")
    parts = lines[0].split(" ")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise DecodeError("Malformed HTTP request line", detail=lines[0])

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if not line or ":" not in line:
            continue
        name, value = line.split(":", 1)
        headers[name.strip().lower()] = value.strip()
    return parts[0], parts[1], headers


def content_length(headers: Dict[str, str]) -> int:
    try:
        return max(0, int(headers.get("content-length", "0")))
    except ValueError:
        return 0


class IngestGateway:
    """
    Accepts local OTLP/HTTP exports and emits one request event each.

    Errors (bind, read, malformed head) are reported through ``on_error``
    and never raised to the caller of :meth:`start`.
    """

    def __init__(
        self,
        on_request: Callable[[GatewayRequest], None],
        on_error: Optional[ErrorCallback] = None,
        host: str = "127.0.0.1",
        read_timeout: float = 10.0,
        max_header_bytes: int = 65536,
    ):
        self.host = host
        self.read_timeout = read_timeout
        self.max_header_bytes = max_header_bytes
        self._on_request = on_request
        self._on_error = on_error
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set["asyncio.Task[None]"] = set()
        self.requests_handled = 0

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> Optional[int]:
        """Actually bound port (useful when started on port 0)."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self, port: int) -> bool:
        """Bind and listen. Returns False (after reporting) if binding failed."""
        if self._server is not None:
            logger.debug("Ingest gateway already running")
            return True
        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                port,
                limit=self.max_header_bytes,
            )
        except OSError as e:
            self._report(BindError(f"{self.host}:{port}", str(e)))
            return False

        logger.info(f"OTLP ingest listening on http://{self.host}:{self.port}")
        return True

    async def stop(self) -> None:
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        for task in list(self._connections):
            task.cancel()
        await server.wait_closed()
        logger.info("OTLP ingest stopped")

    def _report(self, error: AgentRadarError) -> None:
        if self._on_error:
            self._on_error(error)
        else:
            logger.warning(f"Ingest gateway: {error.message} {error.detail}".rstrip())

    async def _read_request(self, reader: BoundedReader) -> GatewayRequest:
        head = await reader.read_until(HEADER_TERMINATOR)
        _method, path, headers = parse_request_head(head[: -len(HEADER_TERMINATOR)])
        body = await reader.read_exactly(content_length(headers))
        encoding = headers.get("content-encoding", "").lower() or None
        return GatewayRequest(
            route=GatewayRoute.from_path(path),
            path=path,
            body=inflate_body(body, encoding),
            content_encoding=encoding,
        )

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            request = await self._read_request(BoundedReader(reader, self.read_timeout))
            self.requests_handled += 1
            logger.debug(f"[INGEST] {request.route.value} {request.path} ({len(request.body)} bytes)")
            self._on_request(request)
            writer.write(OK_RESPONSE)
            await writer.drain()
        except DecodeError as e:
            # Exporters only need the acknowledgement; the request itself is dropped
            self._report(e)
            try:
                writer.write(OK_RESPONSE)
                await writer.drain()
            except (ConnectionError, OSError) as write_error:
                logger.debug(f"Could not acknowledge malformed request: {write_error}")
        except AgentRadarError as e:
            self._report(e)
        except (ConnectionError, OSError) as e:
            self._report(TransportError(f"Connection error: {e}", code="connection_error"))
        finally:
            if task is not None:
                self._connections.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Ingest connection closed uncleanly: {e}")
