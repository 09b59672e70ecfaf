from __future__ import annotations


class StreamError(Exception):
    """Base class for failures raised while consuming a conversation stream."""


class TransportError(StreamError):
    """Opening or reading a stream failed at the network/HTTP level."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolParseError(StreamError):
    def __init__(self, message: str, line: str):
        super().__init__(message)
        self.line = line


class OrderingAnomaly(StreamError):
    """An event referenced state that was never seen, or collided with existing state."""


class UpstreamError(StreamError):
    """The backend reported an error event on the stream."""
