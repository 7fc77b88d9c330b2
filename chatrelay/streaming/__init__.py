"""Model response streaming."""

from chatrelay.streaming.demux import (
    StreamDemultiplexer,
    StreamMode,
    StreamState,
    split_thinking,
)
from chatrelay.streaming.events import EventType, StreamEvent
from chatrelay.streaming.forwarder import ResponseForwarder
from chatrelay.streaming.session import StreamResult, StreamSession

__all__ = [
    # Demultiplexer
    "StreamDemultiplexer",
    "StreamMode",
    "StreamState",
    "split_thinking",
    # Events
    "EventType",
    "StreamEvent",
    # Forwarder
    "ResponseForwarder",
    # Session
    "StreamResult",
    "StreamSession",
]
