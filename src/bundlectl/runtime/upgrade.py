"""WebSocket upgrade channel.

Upgrades on the configured path are intercepted before any other middleware
so long-lived connections never count as in-flight requests. Messages are
JSON text; everything but ``ping`` goes to the embedded server's optional
``handle_message(message, reply)``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from aiohttp import WSCloseCode, WSMsgType, hdrs, web

from .state import PipelineState

log = structlog.get_logger("runtime.upgrade")

GOING_AWAY_MESSAGE = b"Server shutting down"


def is_upgrade(request: web.Request, path: str) -> bool:
    return (
        request.method == hdrs.METH_GET
        and request.path == path
        and request.headers.get(hdrs.UPGRADE, "").lower() == "websocket"
    )


class UpgradeChannel:
    """Owns every open upgraded connection."""

    def __init__(self, server: Any, path: str, state: PipelineState) -> None:
        self.server = server
        self.path = path
        self.state = state
        self.connections: set[Any] = set()

    def middleware(self):
        @web.middleware
        async def upgrade(request: web.Request, handler):
            if is_upgrade(request, self.path):
                return await self.accept(request)
            return await handler(request)

        return upgrade

    async def accept(self, request: web.Request) -> web.StreamResponse:
        if self.state.shutting_down:
            return web.json_response({"status": "shutting_down"}, status=503)
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections.add(ws)
        log.debug("upgrade.open", connections=len(self.connections))
        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.dispatch(ws, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    log.warning("upgrade.error", error=str(ws.exception()))
        finally:
            self.connections.discard(ws)
            log.debug("upgrade.closed", connections=len(self.connections))
        return ws

    async def dispatch(self, ws: web.WebSocketResponse, data: str | bytes) -> None:
        try:
            message = json.loads(data)
        except (ValueError, TypeError) as exc:
            await ws.send_json({"type": "error", "error": "invalid_message", "detail": str(exc)})
            return
        if not isinstance(message, dict):
            await ws.send_json(
                {"type": "error", "error": "invalid_message", "detail": "expected a JSON object"}
            )
            return
        if message.get("type") == "ping":
            await ws.send_json({"type": "pong"})
            return

        handle = getattr(self.server, "handle_message", None)
        if handle is None:
            return

        async def reply(payload: Any) -> None:
            await ws.send_json(payload)

        try:
            await handle(message, reply)
        except Exception as exc:
            log.exception("upgrade.handler_failed")
            await ws.send_json({"type": "error", "error": "handler_failed", "detail": str(exc)})

    async def close_all(self) -> None:
        """Close every connection with GOING_AWAY, concurrently."""
        connections = list(self.connections)
        if not connections:
            return
        log.info("upgrade.closing", connections=len(connections))
        await asyncio.gather(
            *(
                ws.close(code=WSCloseCode.GOING_AWAY, message=GOING_AWAY_MESSAGE)
                for ws in connections
            )
        )
        self.connections.clear()
