"""Tests for the in-memory history store."""

import pytest

from chatrelay.session.store import InMemoryHistoryStore


class TestInMemoryHistoryStore:
    @pytest.mark.asyncio
    async def test_add_assigns_id_and_orders(self):
        store = InMemoryHistoryStore()
        first = await store.add_message("c1", "user", "a")
        second = await store.add_message("c1", "assistant", "b")
        assert first.id and second.id and first.id != second.id
        assert first.created_at < second.created_at

    @pytest.mark.asyncio
    async def test_history_is_snapshot(self):
        store = InMemoryHistoryStore()
        await store.add_message("c1", "user", "a")
        history = await store.get_history("c1")
        await store.add_message("c1", "user", "b")
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_get_recent(self):
        store = InMemoryHistoryStore()
        for i in range(5):
            await store.add_message("c1", "user", str(i))
        recent = await store.get_recent("c1", 2)
        assert [m.content for m in recent] == ["3", "4"]
        assert await store.get_recent("c1", 0) == []

    @pytest.mark.asyncio
    async def test_update_merges_metadata(self):
        store = InMemoryHistoryStore()
        msg = await store.add_message("c1", "assistant", "", metadata={"streaming": True, "model": "m"})
        updated = await store.update_message(
            "c1", msg.id, content="done", is_error=True, metadata={"streaming": False}, bogus=1
        )
        assert updated.content == "done"
        assert updated.is_error
        assert updated.metadata == {"streaming": False, "model": "m"}

    @pytest.mark.asyncio
    async def test_update_unknown_message(self):
        store = InMemoryHistoryStore()
        assert await store.update_message("c1", "nope", content="x") is None

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        store = InMemoryHistoryStore(max_conversations=2)
        await store.add_message("a", "user", "1")
        await store.add_message("b", "user", "2")
        await store.add_message("a", "user", "3")
        await store.add_message("c", "user", "4")
        assert await store.get_history("b") == []
        assert len(await store.get_history("a")) == 2

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemoryHistoryStore()
        await store.add_message("c1", "user", "a")
        store.clear("c1")
        assert await store.get_history("c1") == []
