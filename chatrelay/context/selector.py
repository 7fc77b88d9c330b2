"""Context selection policies.

All three policies share one interface, ``ContextSelector.select(history,
constraints) -> ContextWindow``, so callers can swap policy without branching
on internals. Every policy:

- drops search-progress notices, failed replies and in-flight reply
  placeholders before scoring,
- returns its picks in chronological order,
- never raises; the worst case is an empty window.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from loguru import logger

from chatrelay.config.schema import ContextConfig
from chatrelay.context.estimator import estimate_message_tokens, estimate_tokens
from chatrelay.context.summarizer import summarize_messages
from chatrelay.context.types import (
    MIN_RECENT_MESSAGES,
    PRIORITY_MIN_MESSAGES,
    SUMMARY_BUDGET_RATIO,
    SUMMARY_MAX_LENGTH,
    SUMMARY_MAX_MESSAGES,
    SUMMARY_THRESHOLD,
    SUMMARY_USER_MESSAGES,
    ContextMessage,
    ContextPolicy,
    ContextWindow,
    Message,
    PriorityWeights,
    SelectionConstraints,
)


def exclude_transient(history: Sequence[Message]) -> list[Message]:
    """
    Drop messages that must never reach the model.

    That is search-progress notices, failed replies and reply placeholders
    of a turn that is still streaming.
    """
    return [
        m for m in history
        if not (m.is_search_progress or m.is_error or m.is_in_flight)
    ]


def _chronological(messages: Sequence[Message]) -> list[Message]:
    # sorted() is stable, so equal timestamps keep their store order
    return sorted(messages, key=lambda m: m.created_at)


def _build_window(
    messages: list[Message],
    policy: ContextPolicy,
    summary: str | None = None,
    summary_tokens: int = 0,
) -> ContextWindow:
    return ContextWindow(
        messages=[ContextMessage.from_message(m) for m in messages],
        summary=summary,
        policy=policy,
        total_tokens=sum(estimate_message_tokens(m) for m in messages) + summary_tokens,
    )


def recency_window(
    history: Sequence[Message],
    max_messages: int,
    max_tokens: int,
    min_recent: int = MIN_RECENT_MESSAGES,
) -> list[Message]:
    """
    Pick the newest messages that fit the budget.

    Scans newest to oldest. The first ``min_recent`` scanned messages are
    admitted regardless of size so the exchange the model must answer always
    survives; after that, scanning stops at the first message that would push
    the running total past ``max_tokens`` or once ``max_messages`` is reached.

    Args:
        history: Chronologically ordered messages.
        max_messages: Maximum messages to return.
        max_tokens: Token budget.
        min_recent: Messages admitted unconditionally.

    Returns:
        Selected messages, oldest first.
    """
    selected: list[Message] = []
    total = 0

    for message in reversed(history):
        if len(selected) >= max_messages:
            break
        tokens = estimate_message_tokens(message)
        if len(selected) >= min_recent and total + tokens > max_tokens:
            break
        selected.append(message)
        total += tokens

    selected.reverse()
    return selected


def score_message(
    message: Message,
    recency_index: int,
    weights: PriorityWeights,
) -> int:
    """
    Score a message for the priority-ranked policy.

    Args:
        message: Message to score.
        recency_index: 0 for the newest message, increasing with age.
        weights: Scoring weights.

    Returns:
        Non-negative importance score.
    """
    score = max(0, weights.recency_weight - recency_index)
    if message.has_attachments:
        score += weights.attachment_bonus
    if message.role == "user":
        score += weights.user_bonus
    if len(message.content) > weights.length_threshold:
        score += weights.length_bonus
    if message.role == "system":
        score += weights.system_bonus
    return score


class ContextSelector(ABC):
    """Base class for context selection policies."""

    policy: ContextPolicy

    def select(
        self,
        history: Sequence[Message],
        constraints: SelectionConstraints,
    ) -> ContextWindow:
        """
        Select the context window for one model turn.

        Never raises: any failure is logged and yields an empty window.
        """
        try:
            candidates = _chronological(exclude_transient(history))
            if not candidates:
                return ContextWindow.empty()
            window = self._select(candidates, constraints)
        except Exception as e:
            logger.warning(f"Context selection ({self.policy.value}) failed: {e}")
            return ContextWindow.empty()

        logger.debug(
            f"Selected {len(window.messages)}/{len(history)} messages "
            f"(~{window.total_tokens} tokens) with {window.policy.value} policy"
        )
        return window

    @abstractmethod
    def _select(
        self,
        history: list[Message],
        constraints: SelectionConstraints,
    ) -> ContextWindow:
        """Select from filtered, chronologically ordered history."""
        pass


class RecencyWindowSelector(ContextSelector):
    """Newest messages first, with the latest exchange always kept."""

    policy = ContextPolicy.RECENCY

    def __init__(self, min_recent: int = MIN_RECENT_MESSAGES):
        self.min_recent = min_recent

    def _select(
        self,
        history: list[Message],
        constraints: SelectionConstraints,
    ) -> ContextWindow:
        selected = recency_window(
            history,
            constraints.max_messages,
            constraints.max_tokens,
            self.min_recent,
        )
        return _build_window(selected, self.policy)


class PrioritySelector(ContextSelector):
    """
    Importance-weighted selection.

    Messages are ranked by ``score_message`` (ties go to the newer message)
    and admitted greedily while the running total fits ``max_tokens``. Once a
    message would overflow the budget, messages keep being admitted only
    while fewer than ``min_messages`` have been taken; then selection stops.

    The overflow allowance is unbounded by default. ``leeway_max_tokens``
    skips individual messages larger than that inside the allowance.
    """

    policy = ContextPolicy.PRIORITY

    def __init__(
        self,
        weights: PriorityWeights | None = None,
        min_messages: int = PRIORITY_MIN_MESSAGES,
        leeway_max_tokens: int | None = None,
    ):
        self.weights = weights or PriorityWeights()
        self.min_messages = min_messages
        self.leeway_max_tokens = leeway_max_tokens

    def rank(self, history: list[Message]) -> list[tuple[int, int, Message]]:
        """Return ``(score, index, message)`` tuples, best first."""
        newest = len(history) - 1
        scored = [
            (score_message(message, newest - index, self.weights), index, message)
            for index, message in enumerate(history)
        ]
        scored.sort(key=lambda item: (-item[0], -item[1]))
        return scored

    def _select(
        self,
        history: list[Message],
        constraints: SelectionConstraints,
    ) -> ContextWindow:
        admitted: list[tuple[int, Message]] = []
        total = 0

        for _score, index, message in self.rank(history):
            tokens = estimate_message_tokens(message)
            if total + tokens <= constraints.max_tokens:
                admitted.append((index, message))
                total += tokens
            elif len(admitted) < self.min_messages:
                if self.leeway_max_tokens is not None and tokens > self.leeway_max_tokens:
                    continue
                admitted.append((index, message))
                total += tokens
            else:
                break

        admitted.sort(key=lambda item: item[0])
        return _build_window([m for _, m in admitted], self.policy)


class SummarizedSelector(ContextSelector):
    """
    Summary preamble plus a reduced recency window for very long histories.

    Histories at or under ``threshold`` messages are served by the plain
    recency window.
    """

    policy = ContextPolicy.SUMMARIZED

    def __init__(
        self,
        threshold: int = SUMMARY_THRESHOLD,
        user_messages: int = SUMMARY_USER_MESSAGES,
        max_length: int = SUMMARY_MAX_LENGTH,
        budget_ratio: float = SUMMARY_BUDGET_RATIO,
        max_messages: int = SUMMARY_MAX_MESSAGES,
        min_recent: int = MIN_RECENT_MESSAGES,
    ):
        self.threshold = threshold
        self.user_messages = user_messages
        self.max_length = max_length
        self.budget_ratio = budget_ratio
        self.max_messages = max_messages
        self.min_recent = min_recent

    def _select(
        self,
        history: list[Message],
        constraints: SelectionConstraints,
    ) -> ContextWindow:
        if len(history) <= self.threshold:
            return RecencyWindowSelector(self.min_recent)._select(history, constraints)

        summary = summarize_messages(history, self.max_length, self.user_messages)
        summary_tokens = estimate_tokens(summary)

        # Summary and window share the caller's budget
        budget = max(
            0,
            min(
                int(constraints.max_tokens * self.budget_ratio),
                constraints.max_tokens - summary_tokens,
            ),
        )
        selected = recency_window(
            history,
            min(constraints.max_messages, self.max_messages),
            budget,
            self.min_recent,
        )
        return _build_window(selected, self.policy, summary, summary_tokens)


def choose_policy(
    history_size: int,
    requested: ContextPolicy | str | None = None,
    threshold: int = SUMMARY_THRESHOLD,
) -> ContextPolicy:
    """
    Resolve the policy for a history.

    An explicit policy wins; ``"auto"`` or None picks summarized for long
    histories and the recency window otherwise.
    """
    if requested is not None and requested != "auto":
        return ContextPolicy(requested)
    if history_size > threshold:
        return ContextPolicy.SUMMARIZED
    return ContextPolicy.RECENCY


def build_selector(
    policy: ContextPolicy | str,
    config: ContextConfig | None = None,
) -> ContextSelector:
    """Create the selector for a policy from context configuration."""
    config = config or ContextConfig()
    policy = ContextPolicy(policy)

    if policy == ContextPolicy.RECENCY:
        return RecencyWindowSelector(min_recent=config.min_recent_messages)
    if policy == ContextPolicy.PRIORITY:
        w = config.weights
        return PrioritySelector(
            weights=PriorityWeights(
                recency_weight=w.recency_weight,
                attachment_bonus=w.attachment_bonus,
                user_bonus=w.user_bonus,
                length_bonus=w.length_bonus,
                length_threshold=w.length_threshold,
                system_bonus=w.system_bonus,
            ),
            min_messages=config.priority_min_messages,
            leeway_max_tokens=config.priority_leeway_max_tokens,
        )
    if policy == ContextPolicy.SUMMARIZED:
        return SummarizedSelector(
            threshold=config.summary_threshold,
            user_messages=config.summary_user_messages,
            max_length=config.summary_max_length,
            budget_ratio=config.summary_budget_ratio,
            max_messages=config.summary_max_messages,
            min_recent=config.min_recent_messages,
        )
    raise ValueError(f"No selector for policy: {policy.value}")


def select_context(
    history: Sequence[Message],
    constraints: SelectionConstraints | None = None,
    policy: ContextPolicy | str | None = None,
    config: ContextConfig | None = None,
) -> ContextWindow:
    """
    High-level API to select context for a history.

    Args:
        history: Chronologically ordered messages.
        constraints: Budget; defaults come from ``config``.
        policy: Policy name, ``"auto"`` or None.
        config: Context configuration.

    Returns:
        The selected window. Never raises.
    """
    config = config or ContextConfig()
    constraints = constraints or SelectionConstraints(
        max_tokens=config.max_tokens,
        max_messages=config.max_messages,
    )
    try:
        resolved = choose_policy(
            len(history),
            policy if policy is not None else config.policy,
            config.summary_threshold,
        )
        selector = build_selector(resolved, config)
    except ValueError as e:
        logger.warning(f"Unusable context policy {policy!r}: {e}")
        return ContextWindow.empty()
    return selector.select(history, constraints)
