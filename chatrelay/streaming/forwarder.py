"""Relaying stream events to a connected client."""

from typing import Awaitable, Callable

from loguru import logger

from chatrelay.streaming.events import EventType, StreamEvent

EventSink = Callable[[StreamEvent], Awaitable[None]]


class ResponseForwarder:
    """
    Relays demultiplexed events to one client, in order, without buffering.

    Exactly one terminal event is sent per stream: ``done`` on completion
    or ``error`` on failure, never both. Once the client is gone (the sink
    raised ``ConnectionError``) or the caller cancelled, nothing more is
    sent. Back-pressure is left to the transport behind ``send``.
    """

    def __init__(self, send: EventSink):
        """
        Initialize the forwarder.

        Args:
            send: Transport callback delivering one event to the client.
        """
        self._send = send
        self._finished = False
        self._disconnected = False
        self.sent_count = 0

    @property
    def finished(self) -> bool:
        """True once a terminal event has been sent or attempted."""
        return self._finished

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def active(self) -> bool:
        return not self._finished and not self._disconnected

    def cancel(self) -> None:
        """Stop relaying; later events are dropped."""
        self._disconnected = True

    async def _deliver(self, event: StreamEvent) -> None:
        try:
            await self._send(event)
            self.sent_count += 1
        except ConnectionError as e:
            logger.info(f"Client disconnected during stream: {e}")
            self._disconnected = True

    async def forward(self, event: StreamEvent) -> None:
        """Relay one content or thinking event."""
        if event.is_terminal:
            raise ValueError("Use done() or error() for terminal events")
        if not self.active:
            return
        await self._deliver(event)

    async def forward_all(self, events: list[StreamEvent]) -> None:
        for event in events:
            await self.forward(event)

    async def done(self) -> None:
        """Signal normal completion."""
        if self._finished:
            return
        self._finished = True
        if not self._disconnected:
            await self._deliver(StreamEvent(EventType.DONE))

    async def error(self, message: str) -> None:
        """Signal failure with a user-visible message."""
        if self._finished:
            logger.debug(f"Stream already finished, dropping error: {message}")
            return
        self._finished = True
        if not self._disconnected:
            await self._deliver(StreamEvent(EventType.ERROR, message))
