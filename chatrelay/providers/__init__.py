"""LLM provider abstraction module."""

from chatrelay.providers.base import LLMProvider, LLMResponse, StreamDelta
from chatrelay.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "StreamDelta", "LiteLLMProvider"]
