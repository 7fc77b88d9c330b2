"""Splitting an interleaved model stream into content and thinking channels."""

from dataclasses import dataclass
from enum import Enum

from chatrelay.streaming.events import EventType, StreamEvent

DEFAULT_OPEN_TAG = "<think>"
DEFAULT_CLOSE_TAG = "</think>"


class StreamMode(str, Enum):
    """Demultiplexing modes."""
    PLAIN = "plain"
    IN_THINKING = "in_thinking"


@dataclass
class StreamState:
    """
    Mutable state of one model call's stream.

    Owned by exactly one demultiplexer; created when the call starts
    streaming and discarded when it ends.
    """

    mode: StreamMode = StreamMode.PLAIN
    pending_buffer: str = ""  # Trailing text that may be a partial delimiter
    accumulated_content: str = ""
    accumulated_thinking: str = ""


def partial_suffix_length(text: str, tag: str) -> int:
    """
    Length of the longest suffix of ``text`` that is a proper prefix of ``tag``.

    That suffix may be completed by the next fragment, so it must not be
    emitted yet.
    """
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class StreamDemultiplexer:
    """
    State machine separating inline-delimited thinking from answer text.

    Fragments arrive at arbitrary boundaries. Text is emitted as soon as it
    is classified; only a trailing fragment that could still turn into a
    delimiter is held back. Delimiters are exact, case-sensitive literals
    and are never emitted.

    Usage::

        demux = StreamDemultiplexer()
        for fragment in fragments:
            for event in demux.feed(fragment):
                ...
        for event in demux.flush():
            ...
    """

    def __init__(
        self,
        open_tag: str = DEFAULT_OPEN_TAG,
        close_tag: str = DEFAULT_CLOSE_TAG,
        state: StreamState | None = None,
    ):
        if not open_tag or not close_tag:
            raise ValueError("Delimiters must be non-empty")
        self.open_tag = open_tag
        self.close_tag = close_tag
        self.state = state or StreamState()

    @property
    def content(self) -> str:
        return self.state.accumulated_content

    @property
    def thinking(self) -> str:
        return self.state.accumulated_thinking

    def _current_tag(self) -> str:
        if self.state.mode == StreamMode.PLAIN:
            return self.open_tag
        return self.close_tag

    def _current_channel(self) -> EventType:
        if self.state.mode == StreamMode.PLAIN:
            return EventType.CONTENT
        return EventType.THINKING

    def _toggle(self) -> None:
        if self.state.mode == StreamMode.PLAIN:
            self.state.mode = StreamMode.IN_THINKING
        else:
            self.state.mode = StreamMode.PLAIN

    def emit(self, channel: EventType, text: str) -> StreamEvent | None:
        """
        Record text on a channel and build its event.

        Also used for text a provider already separated, which bypasses
        delimiter parsing.
        """
        if not text:
            return None
        if channel == EventType.CONTENT:
            self.state.accumulated_content += text
        elif channel == EventType.THINKING:
            self.state.accumulated_thinking += text
        else:
            raise ValueError(f"Not a text channel: {channel}")
        return StreamEvent(channel, text)

    def feed(self, fragment: str) -> list[StreamEvent]:
        """
        Consume one fragment.

        Args:
            fragment: Next piece of raw model text.

        Returns:
            Events classified so far, in arrival order.
        """
        events: list[StreamEvent] = []
        text = self.state.pending_buffer + fragment
        self.state.pending_buffer = ""

        while text:
            tag = self._current_tag()
            index = text.find(tag)

            if index != -1:
                event = self.emit(self._current_channel(), text[:index])
                if event:
                    events.append(event)
                text = text[index + len(tag):]
                self._toggle()
                continue

            held = partial_suffix_length(text, tag)
            event = self.emit(self._current_channel(), text[:len(text) - held])
            if event:
                events.append(event)
            self.state.pending_buffer = text[len(text) - held:]
            break

        return events

    def flush(self) -> list[StreamEvent]:
        """
        Emit whatever is still buffered, on the current channel.

        An unterminated thinking block therefore ends up on the thinking
        channel instead of being dropped.
        """
        pending = self.state.pending_buffer
        self.state.pending_buffer = ""
        event = self.emit(self._current_channel(), pending)
        return [event] if event else []


def split_thinking(
    text: str,
    open_tag: str = DEFAULT_OPEN_TAG,
    close_tag: str = DEFAULT_CLOSE_TAG,
) -> tuple[str, str]:
    """
    Split a complete response into ``(content, thinking)``.

    Args:
        text: Full model output.
        open_tag: Opening delimiter.
        close_tag: Closing delimiter.

    Returns:
        Tuple of answer text and reasoning text.
    """
    demux = StreamDemultiplexer(open_tag, close_tag)
    demux.feed(text)
    demux.flush()
    return demux.content, demux.thinking
