# Realtime Transport Layer
"""
Transport adapters for realtime sessions.

Available:
- LocalTransport: In-process channel for tests and simulations
- WebSocketTransport: FastAPI/Starlette WebSocket channel
"""

from .base import (
    AUTH_ERROR_CLOSE_CODE,
    AUTH_ERROR_REASON,
    GOING_AWAY,
    NORMAL_CLOSURE,
    SendFailed,
    TransportClosed,
    TransportError,
    TransportProtocol,
)
from .local_transport import LocalTransport
from .websocket_transport import WebSocketTransport

__all__ = [
    "AUTH_ERROR_CLOSE_CODE",
    "AUTH_ERROR_REASON",
    "GOING_AWAY",
    "NORMAL_CLOSURE",
    "LocalTransport",
    "SendFailed",
    "TransportClosed",
    "TransportError",
    "TransportProtocol",
    "WebSocketTransport",
]
