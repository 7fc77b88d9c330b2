"""LiteLLM provider implementation for multi-provider support."""

import os
from typing import Any, AsyncIterator
from loguru import logger

import litellm
from litellm import acompletion

from chatrelay.config.schema import Config
from chatrelay.providers.base import LLMProvider, LLMResponse, StreamDelta
from chatrelay.streaming.demux import DEFAULT_CLOSE_TAG, DEFAULT_OPEN_TAG, split_thinking


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Supports Novita, OpenRouter, Anthropic, OpenAI and other providers
    through a unified interface.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "novita/deepseek/deepseek-r1",
        open_tag: str = DEFAULT_OPEN_TAG,
        close_tag: str = DEFAULT_CLOSE_TAG,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.open_tag = open_tag
        self.close_tag = close_tag
        self.request_timeout_seconds = float(os.getenv("CHATRELAY_LLM_TIMEOUT_SECONDS", "45"))

        # Detect OpenRouter by api_key prefix or explicit api_base
        self.is_openrouter = bool(
            (api_key and api_key.startswith("sk-or-")) or
            (api_base and "openrouter" in api_base)
        )

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True

    @classmethod
    def from_config(cls, config: Config) -> "LiteLLMProvider":
        """Build a provider from the configured keys, model and delimiters."""
        return cls(
            api_key=config.get_api_key(),
            api_base=config.get_api_base(),
            default_model=config.chat.model,
            open_tag=config.stream.open_tag,
            close_tag=config.stream.close_tag,
        )

    def _resolve_model(self, model: str | None) -> str:
        model = model or self.default_model
        # For OpenRouter, prefix model name if not already prefixed
        if self.is_openrouter and not model.startswith("openrouter/"):
            model = f"openrouter/{model}"
        return model

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        model: str | None,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._resolve_model(model),
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": self.request_timeout_seconds,
        }

        if self.is_openrouter:
            kwargs["extra_headers"] = {"X-Title": "chatrelay"}

        # Pass api_base and api_key directly instead of via os.environ
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key
        return kwargs

    def _redact(self, error: Exception) -> str:
        """Redact potential API keys from error messages."""
        error_msg = str(error)
        if self.api_key and len(self.api_key) > 8:
            error_msg = error_msg.replace(self.api_key, "***")
        return error_msg

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Inline thinking blocks are split out of the answer.
        """
        kwargs = self._build_kwargs(messages, model, max_tokens, temperature)

        try:
            response = await acompletion(**kwargs)
            return self._parse_response(response)
        except Exception as e:
            error_msg = self._redact(e)
            logger.error(f"LLM call error: {error_msg}")
            return LLMResponse(
                content=f"Error calling LLM: {error_msg}",
                finish_reason="error",
            )

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> AsyncIterator[StreamDelta]:
        """
        Stream a chat completion via LiteLLM.

        Native reasoning deltas (``reasoning_content``) are passed through as
        ``thinking``; errors are re-raised with keys redacted.
        """
        kwargs = self._build_kwargs(messages, model, max_tokens, temperature)
        kwargs["stream"] = True

        try:
            response = await acompletion(**kwargs)
            async for chunk in response:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                yield StreamDelta(
                    content=getattr(delta, "content", None),
                    thinking=getattr(delta, "reasoning_content", None),
                    finish_reason=choice.finish_reason,
                )
        except Exception as e:
            error_msg = self._redact(e)
            logger.error(f"LLM stream error: {error_msg}")
            raise RuntimeError(f"Error streaming from LLM: {error_msg}") from e

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        content, thinking = split_thinking(
            message.content or "", self.open_tag, self.close_tag
        )
        native_thinking = getattr(message, "reasoning_content", None)
        if native_thinking:
            thinking = native_thinking + thinking

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=content,
            thinking=thinking or None,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
