"""Token estimation for messages."""

import math

import tiktoken

from chatrelay.context.types import Message

CHARS_PER_TOKEN = 4

# Cache the encoder
_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Get or create the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def estimate_tokens(text: str) -> int:
    """
    Approximate the number of tokens in a text string.

    Uses ``ceil(len / 4)``, which is pure and monotonic in length: the
    selector's greedy budget check relies on longer text never estimating
    fewer tokens.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(message: Message) -> int:
    """
    Estimate tokens for a single message.

    A precomputed ``token_count`` wins; attachments are never tokenized.
    """
    if message.token_count is not None:
        return message.token_count
    return estimate_tokens(message.content)


def estimate_messages_tokens(messages: list[Message]) -> int:
    """Total estimated tokens for a list of messages."""
    return sum(estimate_message_tokens(msg) for msg in messages)


def count_tokens(text: str) -> int:
    """
    Exact token count with tiktoken, used for usage accounting of
    finished replies rather than for budget checks.
    """
    if not text:
        return 0
    return len(_get_encoder().encode(text))
