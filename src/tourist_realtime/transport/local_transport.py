"""
Local Transport Adapter
-----------------------
In-process transport for the realtime hub.

Both ends live in the same process: the hub uses the TransportProtocol side,
while a test or simulation drives the "client" side through push(),
disconnect() and the recorded `sent` frames. The interface matches
WebSocketTransport, so the hub code does not change between the two.

Usage:
    transport = LocalTransport("tourist-42")
    task = asyncio.create_task(hub.handle_connection(token, transport))

    transport.push("location_update", {"lat": 27.1, "lon": 78.0})
    ...
    transport.disconnect()
    await task
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from ..protocol.messages import Frame, InvalidFrame, make_frame
from .base import NORMAL_CLOSURE, SendFailed, TransportClosed


logger = logging.getLogger(__name__)

_DISCONNECT = object()


class LocalTransport:
    """
    In-memory transport.

    Attributes:
        name: Label used in logs.
        sent: Frames delivered to the client side, in order.
        accepted: Whether the handshake was accepted.
        close_code: Code passed to close(), if any.
        close_reason: Reason passed to close(), if any.
        fail_sends: When True, send() raises SendFailed (simulates a dead peer).
    """

    def __init__(self, name: str = "local"):
        self.name = name
        self.sent: List[Frame] = []
        self.accepted = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.fail_sends = False
        self._closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    # ------------------------------------------------------------
    # Hub side
    # ------------------------------------------------------------

    async def accept(self) -> None:
        if self._closed:
            raise TransportClosed(f"{self.name}: closed before accept")
        self.accepted = True

    async def send(self, message: Frame) -> None:
        if self._closed:
            raise TransportClosed(f"{self.name}: send on closed transport")
        if self.fail_sends:
            raise SendFailed(f"{self.name}: peer unreachable")
        self.sent.append(message)

    async def receive(self) -> Optional[Frame]:
        item = await self._inbox.get()
        if item is _DISCONNECT:
            self._closed = True
            return None
        if not isinstance(item, dict):
            raise InvalidFrame(f"{self.name}: frame must be an object, got {type(item).__name__}")
        return item

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_DISCONNECT)
        logger.debug("%s closed (%d %s)", self.name, code, reason)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------
    # Client side
    # ------------------------------------------------------------

    def push(self, event: str, data: Any = None) -> None:
        """Queue an inbound frame as if the client had sent it."""
        self._inbox.put_nowait(make_frame(event, data))

    def push_raw(self, item: Any) -> None:
        """Queue an arbitrary inbound item (used to exercise bad frames)."""
        self._inbox.put_nowait(item)

    def disconnect(self) -> None:
        """Signal a peer-initiated disconnect."""
        self._inbox.put_nowait(_DISCONNECT)

    def received(self, event: str) -> List[Any]:
        """Payloads of every frame of the given event type sent to the client."""
        return [frame.get("data") for frame in self.sent if frame.get("event") == event]

    def __repr__(self) -> str:
        return f"LocalTransport({self.name!r}, sent={len(self.sent)}, closed={self._closed})"
