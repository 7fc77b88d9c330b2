"""Context service: history fetch, selection and degraded fallback."""

from typing import TYPE_CHECKING

from loguru import logger

from chatrelay.config.schema import ContextConfig
from chatrelay.context.selector import RecencyWindowSelector, select_context
from chatrelay.context.types import (
    ContextPolicy,
    ContextWindow,
    Message,
    SelectionConstraints,
)

if TYPE_CHECKING:
    from chatrelay.session.store import HistoryStore


class ContextService:
    """
    Builds the context window for a conversation turn.

    Handles:
    - Reading history from the store
    - Policy choice and selection
    - Falling back to a basic recency query when the full read fails
    """

    def __init__(
        self,
        store: "HistoryStore",
        config: ContextConfig | None = None,
    ):
        """
        Initialize the context service.

        Args:
            store: Conversation history store.
            config: Context configuration.
        """
        self.store = store
        self.config = config or ContextConfig()

    def constraints(
        self,
        max_tokens: int | None = None,
        max_messages: int | None = None,
    ) -> SelectionConstraints:
        """Selection constraints with configured defaults."""
        return SelectionConstraints(
            max_tokens=max_tokens if max_tokens is not None else self.config.max_tokens,
            max_messages=max_messages if max_messages is not None else self.config.max_messages,
        )

    async def build_context(
        self,
        conversation_id: str,
        policy: ContextPolicy | str | None = None,
        constraints: SelectionConstraints | None = None,
    ) -> ContextWindow:
        """
        Build the context window for a conversation.

        Never raises. A failed history read degrades to the fallback query,
        and a failed fallback to an empty window.

        Args:
            conversation_id: Conversation to read.
            policy: Policy override; configured policy if omitted.
            constraints: Budget override.

        Returns:
            Selected context window.
        """
        constraints = constraints or self.constraints()

        try:
            history = await self.store.get_history(conversation_id)
        except Exception as e:
            logger.warning(f"History read failed for {conversation_id}: {e}")
            return await self.fallback_context(conversation_id, constraints)

        window = select_context(history, constraints, policy, self.config)
        if window.is_empty and history:
            logger.warning(
                f"Selection returned no context for {conversation_id} "
                f"({len(history)} messages), using fallback"
            )
            return await self.fallback_context(conversation_id, constraints)

        logger.info(
            f"Context for {conversation_id}: {len(window.messages)} messages, "
            f"~{window.total_tokens} tokens, policy={window.policy.value}"
        )
        return window

    async def fallback_context(
        self,
        conversation_id: str,
        constraints: SelectionConstraints,
    ) -> ContextWindow:
        """
        Basic recency query against the store.

        Takes the latest ``fallback_messages`` messages, skipping failed and
        transient ones, then applies the recency window budget.
        """
        try:
            recent = await self.store.get_recent(
                conversation_id, self.config.fallback_messages
            )
        except Exception as e:
            logger.warning(f"Fallback history read failed for {conversation_id}: {e}")
            return ContextWindow.empty()

        usable: list[Message] = [m for m in recent if not m.is_error]
        window = RecencyWindowSelector(self.config.min_recent_messages).select(
            usable, constraints
        )
        if not window.is_empty:
            window.policy = ContextPolicy.FALLBACK
        return window
