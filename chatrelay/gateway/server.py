"""HTTP API server relaying chat turns to clients."""

import json
from typing import Any

from aiohttp import WSMsgType, web
from loguru import logger

from chatrelay.chat.service import ChatService, TurnOptions
from chatrelay.context.types import Attachment, Message
from chatrelay.streaming.events import StreamEvent


def format_sse(data: dict[str, Any], event: str | None = None) -> bytes:
    """Encode one server-sent event."""
    lines = []
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, ensure_ascii=False)}")
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def parse_turn(data: dict[str, Any]) -> tuple[str, TurnOptions]:
    """
    Read message content and per-turn overrides from a request body.

    Raises:
        ValueError: If content is missing or blank.
    """
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValueError("Message content is required")

    temperature = data.get("temperature")
    max_tokens = data.get("max_tokens", data.get("maxTokens"))
    options = TurnOptions(
        model=data.get("model"),
        system_prompt=data.get("system_prompt", data.get("systemPrompt")),
        temperature=float(temperature) if temperature is not None else None,
        max_tokens=int(max_tokens) if max_tokens is not None else None,
        policy=data.get("policy"),
        attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
    )
    return content, options


class GatewayServer:
    """
    HTTP API server for chat clients.

    Provides endpoints for:
    - Health check (GET /health)
    - Conversation history (GET /api/conversations/{id}/messages)
    - Non-streaming reply (POST /api/conversations/{id}/messages)
    - Server-sent events stream (POST /api/conversations/{id}/stream)
    - WebSocket stream (GET /api/conversations/{id}/ws)
    """

    def __init__(
        self,
        chat: ChatService,
        host: str = "0.0.0.0",
        port: int = 18790,
    ):
        """
        Initialize the gateway server.

        Args:
            chat: Chat service running the turns.
            host: Host to bind to.
            port: Port to listen on.
        """
        self.chat = chat
        self.host = host
        self.port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/api/conversations/{conversation_id}/messages", self._handle_history)
        app.router.add_post("/api/conversations/{conversation_id}/messages", self._handle_message)
        app.router.add_post("/api/conversations/{conversation_id}/stream", self._handle_stream)
        app.router.add_get("/api/conversations/{conversation_id}/ws", self._handle_websocket)
        return app

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "ok"})

    async def _handle_history(self, request: web.Request) -> web.Response:
        conversation_id = request.match_info["conversation_id"]
        messages = await self.chat.store.get_history(conversation_id)
        return web.json_response([m.to_dict() for m in messages])

    async def _handle_message(self, request: web.Request) -> web.Response:
        """
        Run a non-streaming turn.

        Expected JSON body:
        {
            "content": "User message",
            "model": "...", "systemPrompt": "...", "policy": "priority"  (optional)
        }
        """
        conversation_id = request.match_info["conversation_id"]
        try:
            content, options = parse_turn(await request.json())
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)

        try:
            user_message, assistant_message = await self.chat.send_message(
                conversation_id, content, options
            )
        except Exception as e:
            logger.error(f"Error handling message for {conversation_id}: {e}")
            return web.json_response({"error": "Failed to send message"}, status=500)

        return web.json_response({
            "userMessage": user_message.to_dict(),
            "assistantMessage": assistant_message.to_dict(),
        })

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        """Run a streaming turn over server-sent events."""
        conversation_id = request.match_info["conversation_id"]
        try:
            content, options = parse_turn(await request.json())
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)

        response = web.StreamResponse(headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        })
        await response.prepare(request)

        async def send(event: StreamEvent) -> None:
            await response.write(format_sse(event.to_dict()))

        async def on_start(user_message: Message, assistant_message: Message) -> None:
            await response.write(format_sse(
                {"userMessageId": user_message.id, "messageId": assistant_message.id},
                event="stream_start",
            ))

        try:
            await self.chat.stream_message(
                conversation_id, content, send, options, on_start=on_start
            )
        except ConnectionError:
            logger.info(f"SSE client for {conversation_id} went away before streaming")
            return response
        except Exception as e:
            logger.error(f"Streaming error for {conversation_id}: {e}")
            await response.write(format_sse({"type": "error", "data": "Failed to process streaming chat"}))

        await response.write_eof()
        return response

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """
        Run streaming turns over a WebSocket.

        Each text frame is a JSON turn request; events are sent back as
        JSON ``{"type": ..., "data": ...}`` frames.
        """
        conversation_id = request.match_info["conversation_id"]
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        async def send(event: StreamEvent) -> None:
            await ws.send_json(event.to_dict())

        async def on_start(user_message: Message, assistant_message: Message) -> None:
            await ws.send_json({
                "type": "stream_start",
                "data": {"userMessageId": user_message.id, "messageId": assistant_message.id},
            })

        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                logger.warning(f"WebSocket error for {conversation_id}: {ws.exception()}")
                break
            if msg.type != WSMsgType.TEXT:
                continue

            try:
                content, options = parse_turn(json.loads(msg.data))
            except (json.JSONDecodeError, ValueError) as e:
                await ws.send_json({"type": "error", "data": str(e)})
                continue

            try:
                await self.chat.stream_message(
                    conversation_id, content, send, options, on_start=on_start
                )
            except ConnectionError:
                break
            except Exception as e:
                logger.error(f"WebSocket streaming error for {conversation_id}: {e}")
                await ws.send_json({"type": "error", "data": "Failed to process streaming chat"})

        return ws

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info(f"Gateway API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        logger.info("Gateway API stopped")
