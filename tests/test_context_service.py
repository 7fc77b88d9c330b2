"""Tests for the context service and its fallback chain."""

from typing import Any

import pytest

from chatrelay.config.schema import ContextConfig
from chatrelay.context.service import ContextService
from chatrelay.context.types import ContextPolicy, Message
from chatrelay.session.store import InMemoryHistoryStore


# ── Helpers ─────────────────────────────────────────────────────────


class FlakyStore(InMemoryHistoryStore):
    """Store whose full history read fails; optionally the fallback too."""

    def __init__(self, fail_recent: bool = False):
        super().__init__()
        self.fail_recent = fail_recent
        self.recent_limits: list[int] = []

    async def get_history(self, conversation_id: str) -> list[Message]:
        raise ConnectionError("database unavailable")

    async def get_recent(self, conversation_id: str, limit: int) -> list[Message]:
        self.recent_limits.append(limit)
        if self.fail_recent:
            raise ConnectionError("database still unavailable")
        return await super().get_recent(conversation_id, limit)


async def fill(store: InMemoryHistoryStore, count: int, **kwargs: Any) -> None:
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        await store.add_message("c1", role, f"message {i}", **kwargs)


# ── ContextService ──────────────────────────────────────────────────


class TestBuildContext:
    @pytest.mark.asyncio
    async def test_selects_from_history(self):
        store = InMemoryHistoryStore()
        await fill(store, 3)
        service = ContextService(store)
        window = await service.build_context("c1")
        assert [m.content for m in window.messages] == ["message 0", "message 1", "message 2"]
        assert window.policy == ContextPolicy.RECENCY

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_empty(self):
        service = ContextService(InMemoryHistoryStore())
        window = await service.build_context("missing")
        assert window.is_empty

    @pytest.mark.asyncio
    async def test_policy_override(self):
        store = InMemoryHistoryStore()
        await fill(store, 5)
        service = ContextService(store)
        window = await service.build_context("c1", policy="priority")
        assert window.policy == ContextPolicy.PRIORITY

    @pytest.mark.asyncio
    async def test_long_history_summarized(self):
        store = InMemoryHistoryStore()
        await fill(store, 150)
        service = ContextService(store)
        window = await service.build_context("c1")
        assert window.policy == ContextPolicy.SUMMARIZED
        assert window.summary
        assert len(window.messages) <= 15

    @pytest.mark.asyncio
    async def test_search_progress_never_selected(self):
        store = InMemoryHistoryStore()
        await fill(store, 4)
        await store.add_message("c1", "system", "Searching...", metadata={"isSearchProgress": True})
        window = await ContextService(store).build_context("c1")
        assert all(m.content != "Searching..." for m in window.messages)

    @pytest.mark.asyncio
    async def test_failed_and_in_flight_replies_skipped(self):
        store = InMemoryHistoryStore()
        await store.add_message("c1", "user", "first")
        await store.add_message("c1", "assistant", "", is_error=True, error_message="timeout")
        await store.add_message("c1", "user", "second")
        await store.add_message("c1", "assistant", "", metadata={"streaming": True})
        window = await ContextService(store).build_context("c1")
        assert [(m.role, m.content) for m in window.messages] == [("user", "first"), ("user", "second")]
        assert window.policy == ContextPolicy.RECENCY


class TestFallback:
    @pytest.mark.asyncio
    async def test_failed_read_uses_basic_recency(self):
        store = FlakyStore()
        await fill(store, 30)
        service = ContextService(store, ContextConfig(fallback_messages=10))
        window = await service.build_context("c1")
        assert store.recent_limits == [10]
        assert window.policy == ContextPolicy.FALLBACK
        assert [m.content for m in window.messages] == [f"message {i}" for i in range(20, 30)]

    @pytest.mark.asyncio
    async def test_fallback_skips_error_messages(self):
        store = FlakyStore()
        await fill(store, 4)
        await store.add_message("c1", "assistant", "partial", is_error=True, error_message="timeout")
        window = await ContextService(store).build_context("c1")
        assert "partial" not in [m.content for m in window.messages]
        assert len(window.messages) == 4

    @pytest.mark.asyncio
    async def test_failed_fallback_returns_empty(self):
        store = FlakyStore(fail_recent=True)
        await fill(store, 4)
        window = await ContextService(store).build_context("c1")
        assert window.is_empty
        assert window.policy == ContextPolicy.EMPTY

    @pytest.mark.asyncio
    async def test_failed_selection_falls_back(self):
        store = InMemoryHistoryStore()
        await fill(store, 4)
        service = ContextService(store)
        window = await service.build_context("c1", policy="bogus")
        assert window.policy == ContextPolicy.FALLBACK
        assert len(window.messages) == 4

    def test_constraints_defaults(self):
        service = ContextService(InMemoryHistoryStore(), ContextConfig(max_tokens=123, max_messages=7))
        constraints = service.constraints()
        assert constraints.max_tokens == 123
        assert constraints.max_messages == 7
        assert service.constraints(max_tokens=5).max_tokens == 5
