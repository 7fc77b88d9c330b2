"""Conversation context selection."""

from chatrelay.context.estimator import (
    count_tokens,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
)
from chatrelay.context.selector import (
    ContextSelector,
    PrioritySelector,
    RecencyWindowSelector,
    SummarizedSelector,
    build_selector,
    choose_policy,
    select_context,
)
from chatrelay.context.service import ContextService
from chatrelay.context.summarizer import summarize_messages
from chatrelay.context.types import (
    Attachment,
    ContextMessage,
    ContextPolicy,
    ContextWindow,
    Message,
    PriorityWeights,
    SelectionConstraints,
)

__all__ = [
    # Estimator
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "count_tokens",
    # Selector
    "ContextSelector",
    "RecencyWindowSelector",
    "PrioritySelector",
    "SummarizedSelector",
    "build_selector",
    "choose_policy",
    "select_context",
    # Summarizer
    "summarize_messages",
    # Service
    "ContextService",
    # Types
    "Attachment",
    "ContextMessage",
    "ContextPolicy",
    "ContextWindow",
    "Message",
    "PriorityWeights",
    "SelectionConstraints",
]
