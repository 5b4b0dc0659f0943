"""
Room Registry
-------------
Indexes live connections by room name.

Responsibilities:
- Add / remove a connection to / from a named room
- Remove a connection from every room on disconnect
- Hand out point-in-time member snapshots for fan-out

Members are held weakly: the registry indexes connections but never keeps
one alive. All operations are total; there are no error conditions.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import TYPE_CHECKING, Dict, FrozenSet, List


if TYPE_CHECKING:
    from .session import Connection


logger = logging.getLogger(__name__)


ADMIN_ROOM = "admin_room"
PERSONAL_ROOM_PREFIX = "user_"


def personal_room(subject_id: str) -> str:
    """Name of a subject's personal room."""
    return f"{PERSONAL_ROOM_PREFIX}{subject_id}"


class RoomRegistry:
    """
    Thread-safe mapping from room name to member connections.

    A single lock guards every room. Critical sections are pure set
    operations and never await, so the registry can be shared by all
    connection tasks (and by threads) without holding anything across a
    suspension point.

    Each connection's joined_rooms mirrors its memberships, so per-connection
    lookups and removals never scan other rooms.

    Usage:
        registry = RoomRegistry()

        registry.join("admin_room", connection)
        members = registry.members_of("admin_room")   # frozenset snapshot
        registry.leave_all(connection)                # on disconnect
    """

    def __init__(self):
        self._rooms: Dict[str, "weakref.WeakSet[Connection]"] = {}
        self._lock = threading.RLock()

    def join(self, room: str, connection: "Connection") -> None:
        """
        Add a connection to a room, creating the room on first use.

        Idempotent.
        """
        with self._lock:
            members = self._rooms.get(room)
            if members is None:
                members = weakref.WeakSet()
                self._rooms[room] = members
            members.add(connection)
            connection.joined_rooms.add(room)
        logger.debug("%s joined %s", connection, room)

    def leave(self, room: str, connection: "Connection") -> None:
        """Remove a connection from a room. No-op if it is not a member."""
        with self._lock:
            self._discard(room, connection)
            connection.joined_rooms.discard(room)

    def leave_all(self, connection: "Connection") -> List[str]:
        """
        Remove a connection from every room it belongs to.

        Returns:
            Names of the rooms it was removed from (empty on repeat calls).
        """
        with self._lock:
            left = [room for room in list(connection.joined_rooms) if self._discard(room, connection)]
            connection.joined_rooms.clear()

        if left:
            logger.debug("%s left %s", connection, ", ".join(sorted(left)))
        return left

    def members_of(self, room: str) -> FrozenSet["Connection"]:
        """
        Snapshot of a room's members at call time.

        Returns an empty set for unknown rooms.
        """
        with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return frozenset()
            return frozenset(members)

    def rooms_of(self, connection: "Connection") -> FrozenSet[str]:
        """Rooms a connection is currently a member of."""
        with self._lock:
            return frozenset(connection.joined_rooms)

    def _discard(self, room: str, connection: "Connection") -> bool:
        # Caller holds the lock
        members = self._rooms.get(room)
        if members is None or connection not in members:
            return False
        members.discard(connection)
        if not members:
            del self._rooms[room]
        return True

    def room_names(self) -> List[str]:
        """Names of all non-empty rooms."""
        with self._lock:
            return sorted(room for room, members in self._rooms.items() if members)

    def room_sizes(self) -> Dict[str, int]:
        """Member count per room."""
        with self._lock:
            return {room: len(members) for room, members in self._rooms.items() if members}

    def get_stats(self) -> dict:
        """Get registry statistics."""
        sizes = self.room_sizes()
        return {
            "total_rooms": len(sizes),
            "admin_members": sizes.get(ADMIN_ROOM, 0),
            "rooms": sizes,
        }

