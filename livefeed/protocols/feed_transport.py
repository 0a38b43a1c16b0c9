"""
Transport protocols for the feed channel.
The supervisor drives a transport; the transport reports back through a listener.
"""

from typing import Protocol


class ChannelListener(Protocol):
    """Receives transport events. All callbacks run on the event loop thread."""

    def on_open(self) -> None:
        """Channel established."""
        ...

    def on_message(self, raw: str) -> None:
        """One inbound message, delivered before the next is read."""
        ...

    def on_close(self, reason: str) -> None:
        """Channel closed by the peer."""
        ...

    def on_error(self, error: Exception) -> None:
        """Transport-level failure."""
        ...


class StreamTransport(Protocol):
    """Persistent push channel (WebSocket)."""

    def open(self, listener: ChannelListener) -> None:
        ...

    def send(self, message: str) -> bool:
        """Queue an outbound frame. Returns False if the channel is not open."""
        ...

    def close(self) -> None:
        ...


class PollTransport(Protocol):
    """Request/response channel. open() performs the first request."""

    def open(self, listener: ChannelListener) -> None:
        ...

    def poll(self) -> None:
        """Issue one request; the response arrives via on_message or on_error."""
        ...

    def close(self) -> None:
        ...
