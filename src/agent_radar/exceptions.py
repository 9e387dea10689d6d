"""Custom exception classes for Agent Radar."""


class AgentRadarError(Exception):
    """Base exception for Agent Radar errors."""

    def __init__(self, message: str, code: str = "internal", detail: str = ""):
        self.message = message
        self.code = code
        self.detail = detail
        super().__init__(message)


class TransportError(AgentRadarError):
    """Errors raised by listeners and readers (bind, accept, read)."""

    pass


class BindError(TransportError):
    """A listener could not bind its address."""

    def __init__(self, address: str, reason: str = ""):
        super().__init__(f"Cannot bind {address}", code="bind_failed", detail=reason)


class ReadTimeoutError(TransportError):
    """Peer did not deliver data within the read budget."""

    def __init__(self, message: str = "Read timed out"):
        super().__init__(message, code="read_timeout")


class StreamClosedError(TransportError):
    """Peer closed the stream before a complete unit was read."""

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Stream closed after {received} of {expected} bytes",
            code="stream_closed",
        )
        self.expected = expected
        self.received = received


class DecodeError(AgentRadarError):
    """A payload, line or notification could not be decoded."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message, code="decode_failed", detail=detail[:200])


class SessionError(AgentRadarError):
    """Errors related to session tracking."""

    pass


class SessionNotFoundError(SessionError):
    """Session not found."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", code="session_not_found")


class ConnectionLimitError(AgentRadarError):
    """Subscriber connection limit reached."""

    def __init__(self, limit: int):
        super().__init__(
            f"Connection limit reached: {limit} concurrent connections",
            code="connection_limit",
        )
