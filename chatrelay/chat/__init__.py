"""Chat turn orchestration."""

from chatrelay.chat.service import ChatService, TurnOptions

__all__ = ["ChatService", "TurnOptions"]
