"""Stream event types."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Events relayed to the client."""
    CONTENT = "content"    # User-visible answer text
    THINKING = "thinking"  # Reasoning text
    DONE = "done"          # Stream finished normally
    ERROR = "error"        # Stream failed; mutually exclusive with DONE


@dataclass(frozen=True)
class StreamEvent:
    """One relayed event: ``{"type": ..., "data": ...}``."""

    type: EventType
    data: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data}
