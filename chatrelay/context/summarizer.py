"""Conversation summarization for long histories."""

from chatrelay.context.types import (
    EMPTY_SUMMARY,
    SUMMARY_MAX_LENGTH,
    SUMMARY_PREFIX,
    SUMMARY_USER_MESSAGES,
    Message,
)


def summarize_messages(
    messages: list[Message],
    max_length: int = SUMMARY_MAX_LENGTH,
    max_user_messages: int = SUMMARY_USER_MESSAGES,
) -> str:
    """
    Collapse a history into a short synthetic preamble.

    Takes the first ``max_user_messages`` user-authored messages, joins their
    content with single spaces and wraps the result in a fixed sentence. The
    whole summary, prefix included, never exceeds ``max_length`` characters.

    Args:
        messages: Chronologically ordered messages.
        max_length: Maximum summary length in characters.
        max_user_messages: How many user messages to fold in.

    Returns:
        Summary text, or a fixed placeholder when there is nothing to summarize.
    """
    user_texts = [
        m.content for m in messages if m.role == "user" and m.content
    ][:max_user_messages]

    if not user_texts:
        return EMPTY_SUMMARY

    body_budget = max(0, max_length - len(SUMMARY_PREFIX))
    body = " ".join(user_texts)[:body_budget]
    return (SUMMARY_PREFIX + body)[:max_length]
