"""
Protocols
Lightweight Protocols for interface clarity and decoupling.
"""

from .feed_transport import ChannelListener, StreamTransport, PollTransport
from .scheduler import Scheduler, TimerHandle

__all__ = [
    "ChannelListener",
    "StreamTransport",
    "PollTransport",
    "Scheduler",
    "TimerHandle",
]
