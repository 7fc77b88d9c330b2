"""Types for context selection."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

Role = Literal["user", "assistant", "system"]


class ContextPolicy(str, Enum):
    """Context selection policies."""
    RECENCY = "recency"
    PRIORITY = "priority"
    SUMMARIZED = "summarized"
    FALLBACK = "fallback"  # Basic recency query after a failed history read
    EMPTY = "empty"        # Nothing could be selected


@dataclass
class Attachment:
    """Binary-bearing side item owned by a message. Never tokenized."""

    name: str
    mime_type: str = "application/octet-stream"
    url: str | None = None
    data: str | None = None  # base64 payload when no url is available

    def to_content_part(self) -> dict[str, Any]:
        """Render as a multi-part content entry for the model API."""
        if self.mime_type.startswith("image/"):
            url = self.url or f"data:{self.mime_type};base64,{self.data or ''}"
            return {"type": "image_url", "image_url": {"url": url}}
        return {"type": "text", "text": f"[Attachment: {self.name}]"}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        return cls(
            name=data.get("name") or data.get("filename") or "attachment",
            mime_type=data.get("mime_type") or data.get("mimeType") or "application/octet-stream",
            url=data.get("url"),
            data=data.get("data"),
        )


@dataclass
class Message:
    """
    A persisted conversation message, consumed read-only by the selector.

    Messages within a conversation are totally ordered by ``created_at``.
    """

    role: Role
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    token_count: int | None = None
    attachments: list[Attachment] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    is_error: bool = False
    error_message: str | None = None

    @property
    def is_search_progress(self) -> bool:
        return self.metadata.get("isSearchProgress") is True

    @property
    def is_in_flight(self) -> bool:
        """Placeholder of an assistant reply still being streamed."""
        return self.metadata.get("streaming") is True

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Build a message from a store row or JSON (camelCase or snake_case keys)."""
        created = data.get("created_at", data.get("createdAt"))
        if isinstance(created, str):
            created = datetime.fromisoformat(created.replace("Z", "+00:00"))
        elif isinstance(created, (int, float)):
            created = datetime.fromtimestamp(created, tz=timezone.utc)
        elif created is None:
            created = datetime.now(timezone.utc)

        token_count = data.get("token_count", data.get("tokenCount"))
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            created_at=created,
            token_count=int(token_count) if token_count is not None else None,
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
            metadata=dict(data.get("metadata") or {}),
            id=data.get("id"),
            is_error=bool(data.get("is_error", data.get("isError", False))),
            error_message=data.get("error_message", data.get("errorMessage")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "token_count": self.token_count,
            "attachments": [
                {"name": a.name, "mime_type": a.mime_type, "url": a.url, "data": a.data}
                for a in self.attachments
            ],
            "metadata": self.metadata,
            "is_error": self.is_error,
            "error_message": self.error_message,
        }


@dataclass
class ContextMessage:
    """One slot of the context window, ready for model submission."""

    role: Role
    content: str
    attachments: list[Attachment] = field(default_factory=list)

    @classmethod
    def from_message(cls, message: Message) -> "ContextMessage":
        return cls(
            role=message.role,
            content=message.content,
            attachments=list(message.attachments),
        )

    def to_prompt(self) -> dict[str, Any]:
        """Format for an OpenAI-style chat completion request."""
        if not self.attachments:
            return {"role": self.role, "content": self.content}
        parts: list[dict[str, Any]] = [{"type": "text", "text": self.content}]
        parts.extend(a.to_content_part() for a in self.attachments)
        return {"role": self.role, "content": parts}


@dataclass
class ContextWindow:
    """Bounded, chronologically ordered history subset for one model turn."""

    messages: list[ContextMessage] = field(default_factory=list)
    summary: str | None = None
    policy: ContextPolicy = ContextPolicy.EMPTY
    total_tokens: int = 0

    @classmethod
    def empty(cls) -> "ContextWindow":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.messages and not self.summary

    def to_prompt_messages(self, system_prompt: str | None = None) -> list[dict[str, Any]]:
        """
        Build the message list sent to the model.

        Order: system prompt, summary preamble, then selected history.
        """
        prompt: list[dict[str, Any]] = []
        if system_prompt:
            prompt.append({"role": "system", "content": system_prompt})
        if self.summary:
            prompt.append({"role": "system", "content": self.summary})
        prompt.extend(m.to_prompt() for m in self.messages)
        return prompt


@dataclass
class SelectionConstraints:
    """Caller-supplied bounds for one selection."""

    max_tokens: int = 4000
    max_messages: int = 50


@dataclass
class PriorityWeights:
    """Scoring weights for the priority-ranked policy."""

    recency_weight: int = 10
    attachment_bonus: int = 5
    user_bonus: int = 2
    length_bonus: int = 3
    length_threshold: int = 200
    system_bonus: int = 8


# Constants
MIN_RECENT_MESSAGES = 4           # Always kept by the recency window
PRIORITY_MIN_MESSAGES = 10        # Floor admitted by priority policy past the budget
SUMMARY_THRESHOLD = 100           # History size that switches to the summarized policy
SUMMARY_USER_MESSAGES = 20        # User messages folded into the summary
SUMMARY_MAX_LENGTH = 1000
SUMMARY_BUDGET_RATIO = 0.7
SUMMARY_MAX_MESSAGES = 15
FALLBACK_MESSAGES = 10

SUMMARY_PREFIX = "Earlier in this conversation, the user discussed: "
EMPTY_SUMMARY = "No earlier conversation to summarize."
