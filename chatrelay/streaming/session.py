"""Per-call glue between a model stream, the demultiplexer and the client."""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterable, Callable

from loguru import logger

from chatrelay.config.schema import StreamConfig
from chatrelay.context.estimator import count_tokens, estimate_tokens
from chatrelay.providers.base import StreamDelta
from chatrelay.streaming.demux import StreamDemultiplexer
from chatrelay.streaming.events import EventType, StreamEvent
from chatrelay.streaming.forwarder import ResponseForwarder

Fragment = str | StreamDelta


@dataclass
class StreamResult:
    """Outcome of one streamed model call, ready for persistence."""

    content: str
    thinking: str
    is_error: bool = False
    error_message: str | None = None
    disconnected: bool = False
    token_count: int = 0


class StreamSession:
    """
    Drives one model call's stream to completion.

    Raw text fragments go through the demultiplexer; structured deltas
    carrying native reasoning bypass delimiter parsing for that text.
    Transport errors and the whole-stream timeout end the stream with one
    ``error`` event and keep the partial text. Cancellation of the awaiting
    task propagates untouched.
    """

    def __init__(
        self,
        forwarder: ResponseForwarder,
        open_tag: str = "<think>",
        close_tag: str = "</think>",
        timeout_seconds: float | None = 60.0,
        drain_on_disconnect: bool = True,
        token_counter: Callable[[str], int] = estimate_tokens,
    ):
        self.forwarder = forwarder
        self.token_counter = token_counter
        self.demux = StreamDemultiplexer(open_tag, close_tag)
        self.timeout_seconds = timeout_seconds
        self.drain_on_disconnect = drain_on_disconnect

    @classmethod
    def from_config(
        cls,
        forwarder: ResponseForwarder,
        config: StreamConfig | None = None,
    ) -> "StreamSession":
        config = config or StreamConfig()
        return cls(
            forwarder,
            open_tag=config.open_tag,
            close_tag=config.close_tag,
            timeout_seconds=config.timeout_seconds,
            drain_on_disconnect=config.drain_on_disconnect,
            token_counter=count_tokens if config.token_accounting == "tiktoken" else estimate_tokens,
        )

    def route(self, fragment: Fragment) -> list[StreamEvent]:
        """Classify one upstream fragment into channel events."""
        if not isinstance(fragment, StreamDelta):
            return self.demux.feed(fragment)

        events: list[StreamEvent] = []
        if fragment.thinking:
            event = self.demux.emit(EventType.THINKING, fragment.thinking)
            if event:
                events.append(event)
        if fragment.content:
            events.extend(self.demux.feed(fragment.content))
        return events

    async def _consume(self, upstream: AsyncIterable[Fragment]) -> None:
        async for fragment in upstream:
            events = self.route(fragment)
            if self.forwarder.active:
                await self.forwarder.forward_all(events)
            elif not self.drain_on_disconnect:
                logger.info("Client gone, abandoning model stream")
                await self._close(upstream)
                return

    async def _close(self, upstream: AsyncIterable[Fragment]) -> None:
        aclose = getattr(upstream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.debug(f"Error closing model stream: {e}")

    async def run(self, upstream: AsyncIterable[Fragment]) -> StreamResult:
        """
        Consume the upstream until it ends or fails.

        Args:
            upstream: Async sequence of raw text or structured deltas.

        Returns:
            Accumulated content and thinking with error/disconnect flags.
        """
        try:
            async with asyncio.timeout(self.timeout_seconds):
                await self._consume(upstream)
        except TimeoutError:
            await self._close(upstream)
            return await self._fail(f"Stream timeout after {self.timeout_seconds:g} seconds")
        except Exception as e:
            await self._close(upstream)
            return await self._fail(str(e) or type(e).__name__)

        await self.forwarder.forward_all(self.demux.flush())
        await self.forwarder.done()
        result = self._result()
        logger.info(
            f"Stream complete: {len(result.content)} content chars, "
            f"{len(result.thinking)} thinking chars"
        )
        return result

    async def _fail(self, message: str) -> StreamResult:
        logger.error(f"Stream error: {message}")
        # Keep held-back text in the accumulated channels without relaying it
        self.demux.flush()
        await self.forwarder.error(message)
        return self._result(error_message=message)

    def _result(self, error_message: str | None = None) -> StreamResult:
        content = self.demux.content
        return StreamResult(
            content=content,
            thinking=self.demux.thinking,
            is_error=error_message is not None,
            error_message=error_message,
            disconnected=self.forwarder.disconnected,
            token_count=self.token_counter(content),
        )
