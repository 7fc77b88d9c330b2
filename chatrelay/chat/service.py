"""Chat service: one conversation turn from user message to persisted reply."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from chatrelay.config.schema import ChatDefaults, Config
from chatrelay.context.service import ContextService
from chatrelay.context.types import Attachment, ContextPolicy, Message
from chatrelay.providers.base import LLMProvider
from chatrelay.session.store import HistoryStore
from chatrelay.streaming.forwarder import EventSink, ResponseForwarder
from chatrelay.streaming.session import StreamResult, StreamSession


@dataclass
class TurnOptions:
    """Per-turn overrides of the chat defaults."""
    model: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    policy: ContextPolicy | str | None = None
    attachments: list[Attachment] = field(default_factory=list)


class ChatService:
    """
    Runs chat turns for conversations.

    Handles:
    - Saving the user message
    - Building context and prompt
    - Streaming the reply to the client and persisting it
    """

    def __init__(
        self,
        provider: LLMProvider,
        store: HistoryStore,
        config: Config | None = None,
    ):
        self.provider = provider
        self.store = store
        self.config = config or Config()
        self.context = ContextService(store, self.config.context)

    @property
    def defaults(self) -> ChatDefaults:
        return self.config.chat

    async def _prepare(
        self,
        conversation_id: str,
        content: str,
        options: TurnOptions,
    ) -> tuple[Message, list[dict[str, Any]]]:
        user_message = await self.store.add_message(
            conversation_id,
            "user",
            content.strip(),
            attachments=list(options.attachments),
        )
        window = await self.context.build_context(conversation_id, options.policy)
        system_prompt = options.system_prompt or self.defaults.system_prompt
        return user_message, window.to_prompt_messages(system_prompt)

    def _call_kwargs(self, options: TurnOptions) -> dict[str, Any]:
        return {
            "model": options.model or self.defaults.model,
            "max_tokens": options.max_tokens or self.defaults.max_tokens,
            "temperature": (
                options.temperature
                if options.temperature is not None
                else self.defaults.temperature
            ),
        }

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        options: TurnOptions | None = None,
    ) -> tuple[Message, Message]:
        """
        Run a non-streaming turn.

        Returns:
            Tuple of (saved user message, saved assistant message).
        """
        options = options or TurnOptions()
        user_message, prompt = await self._prepare(conversation_id, content, options)
        kwargs = self._call_kwargs(options)

        response = await self.provider.chat(prompt, **kwargs)

        metadata: dict[str, Any] = {}
        if response.thinking:
            metadata["thinking"] = response.thinking
        assistant_message = await self.store.add_message(
            conversation_id,
            "assistant",
            response.content or "",
            token_count=response.usage.get("total_tokens"),
            is_error=response.is_error,
            error_message=response.content if response.is_error else None,
            metadata={"model": kwargs["model"], **metadata},
        )
        return user_message, assistant_message

    async def stream_message(
        self,
        conversation_id: str,
        content: str,
        send: EventSink,
        options: TurnOptions | None = None,
        on_start: Callable[[Message, Message], Awaitable[None]] | None = None,
    ) -> tuple[Message, StreamResult]:
        """
        Run a streaming turn.

        The assistant reply is stored as a placeholder first, then finalized
        with the accumulated content and thinking, or marked as an error
        with whatever partial text arrived.

        Args:
            conversation_id: Conversation to reply in.
            content: User message text.
            send: Transport callback for stream events.
            options: Per-turn overrides.
            on_start: Optional async callback receiving (user_message, assistant_message)
                before the first chunk is relayed.

        Returns:
            Tuple of (finalized assistant message, stream result).
        """
        options = options or TurnOptions()
        user_message, prompt = await self._prepare(conversation_id, content, options)
        kwargs = self._call_kwargs(options)

        placeholder = await self.store.add_message(
            conversation_id,
            "assistant",
            "",
            metadata={"streaming": True, "model": kwargs["model"]},
        )
        if on_start is not None:
            await on_start(user_message, placeholder)

        logger.info(
            f"Streaming reply for {conversation_id} with {kwargs['model']} "
            f"({len(prompt)} prompt messages)"
        )
        forwarder = ResponseForwarder(send)
        session = StreamSession.from_config(forwarder, self.config.stream)
        result = await session.run(self.provider.stream_chat(prompt, **kwargs))

        metadata: dict[str, Any] = {"streaming": False}
        if result.thinking:
            metadata["thinking"] = result.thinking
        if result.disconnected:
            metadata["client_disconnected"] = True

        final = await self.store.update_message(
            conversation_id,
            placeholder.id,
            content=result.content,
            token_count=result.token_count,
            is_error=result.is_error,
            error_message=result.error_message,
            metadata=metadata,
        )
        return final or placeholder, result
