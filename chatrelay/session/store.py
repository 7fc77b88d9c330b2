"""Conversation history storage."""

import secrets
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from loguru import logger

from chatrelay.context.types import Message, Role

# Maximum number of conversations to keep in memory (LRU eviction)
_MAX_CACHED_CONVERSATIONS = 200


class HistoryStore(Protocol):
    """Persistence collaborator consumed by the chat service."""

    async def get_history(self, conversation_id: str) -> list[Message]: ...

    async def get_recent(self, conversation_id: str, limit: int) -> list[Message]: ...

    async def add_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        **kwargs: Any,
    ) -> Message: ...

    async def update_message(
        self,
        conversation_id: str,
        message_id: str,
        **updates: Any,
    ) -> Message | None: ...


@dataclass
class Conversation:
    """A conversation and its ordered messages."""

    id: str
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def find(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


class InMemoryHistoryStore:
    """
    Keeps conversations in process memory.

    Uses an LRU cache to limit memory usage. Reads return snapshots, so a
    selection running concurrently with an append sees a consistent list.
    """

    def __init__(self, max_conversations: int = _MAX_CACHED_CONVERSATIONS):
        self.max_conversations = max_conversations
        self._conversations: OrderedDict[str, Conversation] = OrderedDict()

    def _get_or_create(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = Conversation(id=conversation_id)
            self._conversations[conversation_id] = conversation
            if len(self._conversations) > self.max_conversations:
                evicted, _ = self._conversations.popitem(last=False)
                logger.debug(f"Evicted conversation {evicted} from history cache")
        else:
            self._conversations.move_to_end(conversation_id)
        return conversation

    async def get_history(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation, oldest first."""
        conversation = self._conversations.get(conversation_id)
        return list(conversation.messages) if conversation else []

    async def get_recent(self, conversation_id: str, limit: int) -> list[Message]:
        """The latest ``limit`` messages, oldest first."""
        history = await self.get_history(conversation_id)
        return history[-limit:] if limit > 0 else []

    async def add_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        **kwargs: Any,
    ) -> Message:
        """Append a message and return it."""
        conversation = self._get_or_create(conversation_id)
        message = Message(
            role=role,
            content=content,
            id=kwargs.pop("id", None) or secrets.token_hex(8),
            **kwargs,
        )
        # Keep created_at strictly increasing within a conversation
        if conversation.messages and message.created_at <= conversation.messages[-1].created_at:
            message.created_at = datetime.fromtimestamp(
                conversation.messages[-1].created_at.timestamp() + 1e-6,
                tz=timezone.utc,
            )
        conversation.messages.append(message)
        conversation.updated_at = datetime.now(timezone.utc)
        return message

    async def update_message(
        self,
        conversation_id: str,
        message_id: str,
        **updates: Any,
    ) -> Message | None:
        """Update fields of a stored message. Unknown fields are ignored."""
        conversation = self._conversations.get(conversation_id)
        message = conversation.find(message_id) if conversation else None
        if message is None:
            return None

        for key, value in updates.items():
            if key == "metadata":
                message.metadata = {**message.metadata, **value}
            elif key in ("content", "token_count", "is_error", "error_message"):
                setattr(message, key, value)
            else:
                logger.debug(f"Ignoring unknown message field: {key}")
        conversation.updated_at = datetime.now(timezone.utc)
        return message

    def clear(self, conversation_id: str) -> None:
        """Remove a conversation."""
        self._conversations.pop(conversation_id, None)
