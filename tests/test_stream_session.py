"""Tests for driving a model stream through to the client."""

import asyncio
from typing import AsyncIterator

import pytest

from chatrelay.config.schema import StreamConfig
from chatrelay.context.estimator import count_tokens, estimate_tokens
from chatrelay.providers.base import StreamDelta
from chatrelay.streaming.events import EventType, StreamEvent
from chatrelay.streaming.forwarder import ResponseForwarder
from chatrelay.streaming.session import StreamSession


# ── Helpers ─────────────────────────────────────────────────────────


class Sink:
    def __init__(self, fail_after: int | None = None):
        self.events: list[StreamEvent] = []
        self.fail_after = fail_after

    async def __call__(self, event: StreamEvent) -> None:
        if self.fail_after is not None and len(self.events) >= self.fail_after:
            raise ConnectionResetError("client closed")
        self.events.append(event)

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]

    def text(self, channel: EventType) -> str:
        return "".join(e.data for e in self.events if e.type == channel)


class Upstream:
    """Fake model stream that records how far it was consumed."""

    def __init__(self, fragments, error: Exception | None = None, stall: float | None = None):
        self.fragments = fragments
        self.error = error
        self.stall = stall
        self.pulled = 0
        self.closed = False

    async def iterate(self) -> AsyncIterator:
        try:
            for fragment in self.fragments:
                self.pulled += 1
                yield fragment
            if self.stall is not None:
                await asyncio.sleep(self.stall)
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class ClosableUpstream:
    """Async iterator that fails or stalls after its fragments and records aclose()."""

    def __init__(self, fragments, error: Exception | None = None, stall: float | None = None):
        self.fragments = list(fragments)
        self.error = error
        self.stall = stall
        self.close_calls = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.fragments:
            return self.fragments.pop(0)
        if self.stall is not None:
            await asyncio.sleep(self.stall)
        if self.error is not None:
            raise self.error
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.close_calls += 1


def make_session(sink: Sink, **kwargs) -> StreamSession:
    return StreamSession(ResponseForwarder(sink), **kwargs)


# ── Completion ──────────────────────────────────────────────────────


class TestCompletion:
    @pytest.mark.asyncio
    async def test_relays_and_accumulates(self):
        sink = Sink()
        upstream = Upstream(["Hello <th", "ink>reasoning</thi", "nk> world"])
        result = await make_session(sink).run(upstream.iterate())

        assert result.content == "Hello  world"
        assert result.thinking == "reasoning"
        assert not result.is_error
        assert sink.text(EventType.CONTENT) == "Hello  world"
        assert sink.text(EventType.THINKING) == "reasoning"
        assert sink.types[-1] == EventType.DONE
        assert sink.types.count(EventType.DONE) == 1

    @pytest.mark.asyncio
    async def test_held_back_text_flushed_before_done(self):
        sink = Sink()
        result = await make_session(sink).run(Upstream(["<think>unfinished</thi"]).iterate())
        assert result.thinking == "unfinished</thi"
        assert sink.types == [EventType.THINKING, EventType.THINKING, EventType.DONE]

    @pytest.mark.asyncio
    async def test_structured_reasoning_bypasses_delimiters(self):
        sink = Sink()
        upstream = Upstream([
            StreamDelta(thinking="weighing <think> options"),
            StreamDelta(content="Answer"),
            StreamDelta(finish_reason="stop"),
        ])
        result = await make_session(sink).run(upstream.iterate())
        assert result.thinking == "weighing <think> options"
        assert result.content == "Answer"

    @pytest.mark.asyncio
    async def test_token_count_uses_estimate(self):
        sink = Sink()
        result = await make_session(sink).run(Upstream(["x" * 40]).iterate())
        assert result.token_count == 10

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        sink = Sink()
        result = await make_session(sink).run(Upstream([]).iterate())
        assert result.content == ""
        assert sink.types == [EventType.DONE]


# ── Failure ─────────────────────────────────────────────────────────


class TestFailure:
    @pytest.mark.asyncio
    async def test_transport_error_keeps_partial_text(self):
        sink = Sink()
        upstream = Upstream(["Partial ", "answer"], error=RuntimeError("connection reset by peer"))
        result = await make_session(sink).run(upstream.iterate())

        assert result.is_error
        assert result.content == "Partial answer"
        assert result.error_message == "connection reset by peer"
        assert sink.types == [EventType.CONTENT, EventType.CONTENT, EventType.ERROR]
        assert EventType.DONE not in sink.types

    @pytest.mark.asyncio
    async def test_held_back_text_kept_but_not_relayed_on_error(self):
        sink = Sink()
        upstream = Upstream(["Hello <thi"], error=RuntimeError("boom"))
        result = await make_session(sink).run(upstream.iterate())
        assert result.content == "Hello <thi"
        assert sink.text(EventType.CONTENT) == "Hello "

    @pytest.mark.asyncio
    async def test_timeout(self):
        sink = Sink()
        upstream = Upstream(["slow "], stall=5)
        result = await make_session(sink, timeout_seconds=0.05).run(upstream.iterate())

        assert result.is_error
        assert result.content == "slow "
        assert "timeout" in result.error_message.lower()
        assert sink.types == [EventType.CONTENT, EventType.ERROR]

    @pytest.mark.asyncio
    async def test_error_without_message_uses_type_name(self):
        sink = Sink()
        result = await make_session(sink).run(Upstream([], error=RuntimeError()).iterate())
        assert result.error_message == "RuntimeError"

    @pytest.mark.asyncio
    async def test_upstream_closed_after_transport_error(self):
        upstream = ClosableUpstream(["Partial"], error=RuntimeError("reset"))
        result = await make_session(Sink()).run(upstream)
        assert result.is_error
        assert upstream.close_calls == 1

    @pytest.mark.asyncio
    async def test_upstream_closed_after_timeout(self):
        upstream = ClosableUpstream(["slow"], stall=5)
        result = await make_session(Sink(), timeout_seconds=0.05).run(upstream)
        assert result.is_error
        assert upstream.close_calls == 1

    @pytest.mark.asyncio
    async def test_upstream_not_closed_after_completion(self):
        upstream = ClosableUpstream(["done"])
        await make_session(Sink()).run(upstream)
        assert upstream.close_calls == 0

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        sink = Sink()
        upstream = Upstream(["start"], stall=5)
        task = asyncio.create_task(make_session(sink).run(upstream.iterate()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert EventType.ERROR not in sink.types


# ── Client disconnect ───────────────────────────────────────────────


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_drains_by_default(self):
        sink = Sink(fail_after=1)
        upstream = Upstream(["one ", "two ", "three"])
        result = await make_session(sink).run(upstream.iterate())

        assert result.disconnected
        assert not result.is_error
        assert result.content == "one two three"
        assert upstream.pulled == 3
        assert [e.data for e in sink.events] == ["one "]

    @pytest.mark.asyncio
    async def test_abandons_upstream_when_not_draining(self):
        sink = Sink(fail_after=1)
        upstream = Upstream(["one ", "two ", "three ", "four"])
        result = await make_session(sink, drain_on_disconnect=False).run(upstream.iterate())

        assert result.disconnected
        assert upstream.closed
        assert upstream.pulled < 4
        assert result.content.startswith("one two")


class TestFromConfig:
    def test_defaults(self):
        session = StreamSession.from_config(ResponseForwarder(Sink()))
        assert session.timeout_seconds == 60.0
        assert session.drain_on_disconnect is True
        assert session.token_counter is estimate_tokens

    def test_tiktoken_accounting(self):
        config = StreamConfig(token_accounting="tiktoken", open_tag="<r>", close_tag="</r>")
        session = StreamSession.from_config(ResponseForwarder(Sink()), config)
        assert session.token_counter is count_tokens
        assert session.demux.open_tag == "<r>"
