"""Conversation history storage."""

from chatrelay.session.store import Conversation, HistoryStore, InMemoryHistoryStore

__all__ = ["Conversation", "HistoryStore", "InMemoryHistoryStore"]
