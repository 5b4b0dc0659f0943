"""
WebSocket Transport Adapter
---------------------------
Runs a realtime session over a FastAPI/Starlette WebSocket.

Frames are JSON text messages; binary messages are decoded as UTF-8 JSON.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from ..protocol.messages import Frame, decode_frame
from .base import NORMAL_CLOSURE, SendFailed, TransportClosed


logger = logging.getLogger(__name__)


class WebSocketTransport:
    """
    TransportProtocol implementation backed by a WebSocket.

    Usage:
        @app.websocket("/ws")
        async def ws_endpoint(websocket: WebSocket):
            await hub.handle_connection(token, WebSocketTransport(websocket))
    """

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self._closed = False

    @property
    def peer(self) -> str:
        client = self._ws.client
        return f"{client.host}:{client.port}" if client else "unknown"

    async def accept(self) -> None:
        await self._ws.accept()

    async def send(self, message: Frame) -> None:
        if self.closed:
            raise TransportClosed(f"{self.peer}: send on closed websocket")
        try:
            await self._ws.send_json(message)
        except Exception as exc:
            self._closed = True
            raise SendFailed(f"{self.peer}: {exc}") from exc

    async def receive(self) -> Optional[Frame]:
        if self.closed:
            return None

        message = await self._ws.receive()
        if message["type"] == "websocket.disconnect":
            self._closed = True
            return None

        raw = message.get("text")
        if raw is None and message.get("bytes") is not None:
            raw = message["bytes"].decode("utf-8", errors="replace")
        return decode_frame(raw)

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self.closed:
            return
        self._closed = True
        try:
            await self._ws.close(code=code, reason=reason)
        except RuntimeError as exc:
            # Peer already gone
            logger.debug("Close on %s ignored: %s", self.peer, exc)

    @property
    def closed(self) -> bool:
        return (
            self._closed
            or self._ws.client_state == WebSocketState.DISCONNECTED
            or self._ws.application_state == WebSocketState.DISCONNECTED
        )
