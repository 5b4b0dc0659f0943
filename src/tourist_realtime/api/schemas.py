"""
API Schemas
-----------
Pydantic models for the realtime hub's HTTP endpoints.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..protocol.messages import EventType


class RootStatus(BaseModel):
    """Response of GET /."""
    success: bool = True
    message: str


class HealthStatus(BaseModel):
    """Response of GET /health."""
    status: str = "OK"
    timestamp: str = Field(..., description="ISO-8601 UTC timestamp")
    uptime: float = Field(..., description="Seconds since the app started")
    environment: str
    version: str
    hub_running: bool


class SessionStats(BaseModel):
    active_connections: int
    privileged_connections: int
    rejected_connections: int
    sent_frames: int
    failed_sends: int


class RoomStats(BaseModel):
    total_rooms: int
    admin_members: int
    rooms: Dict[str, int] = Field(default_factory=dict)


class RoutingStats(BaseModel):
    routed_events: int
    dropped_events: int
    deliveries: int
    overflowed_deliveries: int


class HubStats(BaseModel):
    """Response of GET /api/realtime/stats."""
    running: bool
    uptime_sec: float
    queued_events: int
    invalid_frames: int
    sessions: SessionStats
    rooms: RoomStats
    routing: RoutingStats


class PublishRequest(BaseModel):
    """
    Body of POST /api/realtime/publish.

    Mirrors the wire frame: {"event": ..., "data": {...}}.
    """
    event: EventType
    data: Optional[Dict[str, Any]] = None


class PublishResponse(BaseModel):
    success: bool = True
    event_id: str
    event: EventType
