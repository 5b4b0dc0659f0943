"""
Realtime Protocol Messages
--------------------------
Event types and wire frames for the realtime channel.

Every frame on the wire is a JSON object of the form:

    {"event": "<event type>", "data": <payload>}

Payloads are opaque to the hub and forwarded verbatim.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


# Type alias for a decoded wire frame
Frame = Dict[str, Any]

# Server control frames (never routed)
SESSION_READY = "session_ready"
ERROR = "error"


class InvalidFrame(ValueError):
    """Raised when an inbound frame cannot be decoded."""


class EventType(str, Enum):
    """Domain events carried over the realtime channel."""
    DEVICE_UPDATE = "device_update"
    LOCATION_UPDATE = "location_update"
    EMERGENCY_ALERT = "emergency_alert"
    EMERGENCY_NOTIFICATION = "emergency_notification"  # Outbound only


@dataclass
class Event:
    """
    A domain event.

    Attributes:
        type: Event type.
        payload: Opaque structured data, forwarded verbatim.
        event_id: Unique identifier (auto-generated).
        timestamp: Unix timestamp when the event was created.
    """
    type: EventType
    payload: Any = None
    event_id: str = field(default_factory=lambda: f"evt-{uuid.uuid4().hex}")
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if not isinstance(self.type, EventType):
            self.type = EventType(self.type)

    def retag(self, event_type: EventType) -> "Event":
        """Copy of this event under another type, same payload and id."""
        return Event(
            type=event_type,
            payload=self.payload,
            event_id=self.event_id,
            timestamp=self.timestamp,
        )

    def to_frame(self) -> Frame:
        """Wire representation."""
        return make_frame(self.type.value, self.payload)

    @classmethod
    def from_frame(cls, frame: Frame) -> Optional["Event"]:
        """
        Build an event from an inbound frame.

        Returns:
            Event, or None if the frame names an unknown event type.

        Raises:
            InvalidFrame: If the frame has no event name.
        """
        name = frame.get("event")
        if not isinstance(name, str) or not name:
            raise InvalidFrame("frame is missing an 'event' name")
        try:
            event_type = EventType(name)
        except ValueError:
            return None
        return cls(type=event_type, payload=frame.get("data"))


def make_frame(event: str, data: Any = None) -> Frame:
    """Build a wire frame."""
    return {"event": event, "data": data}


def decode_frame(raw: str) -> Frame:
    """
    Decode a text frame.

    Raises:
        InvalidFrame: If the text is not a JSON object.
    """
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidFrame(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(frame, dict):
        raise InvalidFrame(f"frame must be a JSON object, got {type(frame).__name__}")
    return frame


def create_session_ready(subject_id: str, role: str, rooms) -> Frame:
    """Factory for the frame sent once a session has joined its rooms."""
    return make_frame(
        SESSION_READY,
        {"subject_id": subject_id, "role": role, "rooms": sorted(rooms)},
    )


def create_error(message: str) -> Frame:
    """Factory for an error frame."""
    return make_frame(ERROR, {"message": message})
