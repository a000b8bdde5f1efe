"""Exception hierarchy for the chat engine."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error raised by the chat engine."""


class ClientError(ChatError):
    """The server rejected the request with a 4xx status. Never retried."""

    def __init__(self, status_code: int, body: str = "", url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"API Error ({status_code}): {body}")


class ServerError(ChatError):
    """The server answered with a 5xx status."""

    def __init__(self, status_code: int, body: str = "", url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"Server Error ({status_code}): {body}")


class TransportError(ChatError):
    """Network-level failure: refused connection, timeout, reset."""


class ProtocolError(ChatError):
    """The response could not be used: error envelope, HTML, or no content."""


class CancellationError(ChatError):
    """Cooperative cancellation was observed."""


class DepthExceededError(ChatError):
    """The tool-call continuation ceiling was reached."""

    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        super().__init__(f"Max tool-call depth reached ({max_depth}).")
