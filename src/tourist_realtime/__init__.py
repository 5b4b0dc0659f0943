# Tourist Safety Realtime
"""
Authenticated realtime event broadcasting for the tourist safety platform.

Subpackages:
- auth: Bearer credential verification
- protocol: Event types and wire frames
- transport: Transport adapters (LocalTransport, WebSocketTransport)
- server: Rooms, sessions, routing and the hub
- api: FastAPI application
"""

# Version
__version__ = "1.0.0"

from .config import RealtimeConfig
from .protocol import Event, EventType
from .server import RealtimeHub

__all__ = [
    "Event",
    "EventType",
    "RealtimeConfig",
    "RealtimeHub",
]
