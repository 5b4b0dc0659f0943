# Realtime Server
"""
Server-side components of the realtime hub.

Provides:
- RoomRegistry: Room name → live connections
- SessionManager: Connection lifecycle (authenticate, join, release)
- EventRouter: Room resolution and fan-out
- RealtimeHub: Entry points and router channel
"""

from .room_registry import ADMIN_ROOM, RoomRegistry, personal_room
from .session import Connection, SessionManager, SessionState, SessionStateError
from .router import ROUTING_TABLE, EventRouter, RoutingRule
from .hub import RealtimeHub

__all__ = [
    "ADMIN_ROOM",
    "ROUTING_TABLE",
    "Connection",
    "EventRouter",
    "RealtimeHub",
    "RoomRegistry",
    "RoutingRule",
    "SessionManager",
    "SessionState",
    "SessionStateError",
    "personal_room",
]
