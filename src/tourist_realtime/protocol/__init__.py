# Realtime Protocol
"""
Wire protocol for the realtime channel.

Provides event types and frame helpers shared by the hub and transports.
"""

from .messages import (
    ERROR,
    SESSION_READY,
    Event,
    EventType,
    Frame,
    InvalidFrame,
    create_error,
    create_session_ready,
    decode_frame,
    make_frame,
)

__all__ = [
    "ERROR",
    "SESSION_READY",
    "Event",
    "EventType",
    "Frame",
    "InvalidFrame",
    "create_error",
    "create_session_ready",
    "decode_frame",
    "make_frame",
]
