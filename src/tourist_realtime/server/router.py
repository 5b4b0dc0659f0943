"""
Event Router
------------
Fans domain events out to the rooms that should see them.

Routing table:

    device_update    → admin_room
    location_update  → admin_room
    emergency_alert  → admin_room
                       + user_<c> for each c in payload["contacts"],
                         re-tagged as emergency_notification

The sender never receives its own event. Any other event type resolves to no
rooms and is dropped. route() never waits on a transport: it puts the frame
on each member's outbox, and a member whose outbox is full loses the frame
without affecting anyone else.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..protocol.messages import Event, EventType
from .room_registry import ADMIN_ROOM, RoomRegistry, personal_room
from .session import SessionState


if TYPE_CHECKING:
    from .session import Connection


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingRule:
    """
    How one event type is routed.

    Attributes:
        rooms: Fixed target rooms.
        contact_event: If set, payload["contacts"] are addressed through their
            personal rooms with the event re-tagged to this type.
        exclude_sender: Skip the origin connection during fan-out.
    """
    rooms: Tuple[str, ...] = ()
    contact_event: Optional[EventType] = None
    exclude_sender: bool = True


ROUTING_TABLE: Dict[EventType, RoutingRule] = {
    EventType.DEVICE_UPDATE: RoutingRule(rooms=(ADMIN_ROOM,)),
    EventType.LOCATION_UPDATE: RoutingRule(rooms=(ADMIN_ROOM,)),
    EventType.EMERGENCY_ALERT: RoutingRule(
        rooms=(ADMIN_ROOM,),
        contact_event=EventType.EMERGENCY_NOTIFICATION,
    ),
}


class EventRouter:
    """
    Resolves target rooms and queues events for their current members.

    Usage:
        router = EventRouter(registry)
        router.route(event, origin_connection)
    """

    def __init__(self, registry: RoomRegistry):
        """
        Args:
            registry: Room registry shared with the session manager.
        """
        self._registry = registry
        self._stats_lock = threading.Lock()
        self._routed = 0
        self._dropped = 0
        self._delivered = 0
        self._overflowed = 0

    # ============================================================
    # Resolution
    # ============================================================

    def resolve(self, event: Event) -> List[Tuple[str, Event]]:
        """
        Target rooms for an event, each with the event as it is delivered there.

        Returns:
            (room, event) pairs in delivery order; empty if the type is not routed.
        """
        rule = ROUTING_TABLE.get(event.type)
        if rule is None:
            return []

        targets = [(room, event) for room in rule.rooms]

        if rule.contact_event is not None:
            notification = event.retag(rule.contact_event)
            for contact in self._contacts(event):
                targets.append((personal_room(contact), notification))

        return targets

    @staticmethod
    def _contacts(event: Event) -> List[str]:
        """Distinct contact ids from the payload, in order."""
        if not isinstance(event.payload, dict):
            return []

        contacts = event.payload.get("contacts")
        if contacts is None:
            return []
        if not isinstance(contacts, (list, tuple)):
            logger.warning(
                "Ignoring contacts on %s: expected a list, got %s",
                event.event_id, type(contacts).__name__,
            )
            return []

        seen = []
        for contact in contacts:
            if contact is None or isinstance(contact, (dict, list)):
                continue
            contact_id = str(contact)
            if contact_id and contact_id not in seen:
                seen.append(contact_id)
        return seen

    # ============================================================
    # Fan-out
    # ============================================================

    def route(self, event: Event, origin: Optional["Connection"] = None) -> int:
        """
        Queue an event for every current member of its target rooms.

        Only enqueues onto each member's outbox; never waits on a transport.

        Args:
            event: Event to route.
            origin: Connection that produced it (None for server-side events).

        Returns:
            Number of frames queued.
        """
        targets = self.resolve(event)
        if not targets:
            with self._stats_lock:
                self._dropped += 1
            logger.debug("No route for %s (%s), dropped", event.type.value, event.event_id)
            return 0

        rule = ROUTING_TABLE[event.type]
        queued = 0
        overflowed = 0

        for room, outbound in targets:
            # Snapshot taken per room, after any earlier disconnects were released
            members = self._registry.members_of(room)
            if not members:
                continue

            frame = outbound.to_frame()
            for member in sorted(members, key=lambda c: c.connected_at):
                if rule.exclude_sender and member is origin:
                    continue
                if member.state is SessionState.CLOSED:
                    continue
                if member.enqueue(frame):
                    queued += 1
                else:
                    overflowed += 1
                    logger.warning(
                        "Outbox of %s is full, dropped %s via %s",
                        member, frame["event"], room,
                    )

        with self._stats_lock:
            self._routed += 1
            self._delivered += queued
            self._overflowed += overflowed
        return queued

    # ============================================================
    # Stats
    # ============================================================

    def get_stats(self) -> dict:
        """Get routing statistics."""
        with self._stats_lock:
            return {
                "routed_events": self._routed,
                "dropped_events": self._dropped,
                "deliveries": self._delivered,
                "overflowed_deliveries": self._overflowed,
            }
