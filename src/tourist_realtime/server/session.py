"""
Session Manager
---------------
Owns the lifecycle of every realtime connection.

State machine:

    CONNECTING ──auth ok──▶ AUTHENTICATED ──rooms joined──▶ JOINED ──disconnect──▶ CLOSED
        │                                                                          ▲
        └──────────────────────────auth failed─────────────────────────────────────┘

CLOSED is terminal. Release runs exactly once per connection, and always
removes the connection from every room before it is dropped.

Each joined connection owns a bounded outbox drained by its own writer task,
so a slow or stalled peer only ever delays its own frames.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from ..auth.verifier import AuthError, Identity, IdentityVerifier
from ..config import DEFAULT_PRIVILEGED_ROLES
from ..protocol.messages import create_session_ready
from ..transport.base import (
    AUTH_ERROR_CLOSE_CODE,
    AUTH_ERROR_REASON,
    NORMAL_CLOSURE,
    TransportError,
    TransportProtocol,
)
from .room_registry import ADMIN_ROOM, RoomRegistry, personal_room


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle state of a connection."""
    CONNECTING = "CONNECTING"
    AUTHENTICATED = "AUTHENTICATED"
    JOINED = "JOINED"
    CLOSED = "CLOSED"


_TRANSITIONS = {
    SessionState.CONNECTING: {SessionState.AUTHENTICATED, SessionState.CLOSED},
    SessionState.AUTHENTICATED: {SessionState.JOINED, SessionState.CLOSED},
    SessionState.JOINED: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class SessionStateError(RuntimeError):
    """Raised on an illegal lifecycle transition."""


class Connection:
    """
    A live transport endpoint.

    Attributes:
        connection_id: Unique identifier.
        transport: Channel to the peer.
        joined_rooms: Rooms the connection is in (maintained by RoomRegistry).
        connected_at: Unix timestamp of the transport connect.
        outbox: Frames waiting for the writer task (set once the session opens).
        writer: Task draining the outbox into the transport.
    """

    def __init__(self, transport: TransportProtocol, connection_id: Optional[str] = None):
        self.connection_id = connection_id or uuid.uuid4().hex[:12]
        self.transport = transport
        self.joined_rooms: Set[str] = set()
        self.connected_at = time.time()
        self.outbox: Optional[asyncio.Queue] = None
        self.writer: Optional[asyncio.Task] = None
        self._identity: Optional[Identity] = None
        self._state = SessionState.CONNECTING
        self._state_lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def subject_id(self) -> Optional[str]:
        return self._identity.subject_id if self._identity else None

    @property
    def role(self) -> Optional[str]:
        return self._identity.role if self._identity else None

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.JOINED

    def authenticate(self, identity: Identity) -> None:
        """Bind the verified identity. Allowed once, from CONNECTING."""
        with self._state_lock:
            self._advance(SessionState.AUTHENTICATED)
            self._identity = identity

    def mark_joined(self) -> None:
        with self._state_lock:
            self._advance(SessionState.JOINED)

    def mark_closed(self) -> bool:
        """
        Move to CLOSED.

        Returns:
            True if this call performed the transition, False if already closed.
        """
        with self._state_lock:
            if self._state is SessionState.CLOSED:
                return False
            self._advance(SessionState.CLOSED)
            return True

    def _advance(self, target: SessionState) -> None:
        # Caller holds the state lock
        if target not in _TRANSITIONS[self._state]:
            raise SessionStateError(
                f"{self}: illegal transition {self._state.value} -> {target.value}"
            )
        self._state = target

    def enqueue(self, frame: dict) -> bool:
        """
        Queue a frame for the writer without waiting.

        Must be called from the event loop that owns the outbox.

        Returns:
            False if the connection is closed, has no outbox, or the outbox is full.
        """
        if self.outbox is None or self._state is SessionState.CLOSED:
            return False
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def stop_writer(self) -> None:
        """
        Cancel the writer and discard unsent frames.

        Safe to call from any thread; the work is handed to the writer's loop.
        """
        writer = self.writer
        if writer is None or writer.done():
            return

        loop = writer.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._discard_outbox()
        else:
            loop.call_soon_threadsafe(self._discard_outbox)

    def _discard_outbox(self) -> None:
        # Runs on the writer's loop
        self.writer.cancel()
        while True:
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.outbox.task_done()

    def __repr__(self) -> str:
        return f"Connection({self.connection_id}, subject={self.subject_id}, role={self.role})"


class SessionManager:
    """
    Authenticates connections, assigns their rooms and tears them down.

    Usage:
        sessions = SessionManager(verifier, registry)

        connection = await sessions.open(token, transport)
        if connection is None:
            return  # rejected, transport already closed

        ...  # receive loop

        sessions.release(connection)
    """

    def __init__(
        self,
        verifier: IdentityVerifier,
        registry: RoomRegistry,
        privileged_roles: Iterable[str] = DEFAULT_PRIVILEGED_ROLES,
        send_timeout_sec: float = 5.0,
        outbox_maxsize: int = 256,
    ):
        """
        Args:
            verifier: Credential verifier.
            registry: Room registry shared with the router.
            privileged_roles: Roles that join admin_room.
            send_timeout_sec: Upper bound for a single transport send.
            outbox_maxsize: Frames a connection may have waiting before new
                ones are dropped.
        """
        self._verifier = verifier
        self._registry = registry
        self._privileged_roles = frozenset(privileged_roles)
        self._send_timeout = send_timeout_sec
        self._outbox_maxsize = outbox_maxsize
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.RLock()
        self._rejected = 0
        self._sent = 0
        self._send_failures = 0

    # ============================================================
    # Lifecycle
    # ============================================================

    async def open(
        self,
        credential: Optional[str],
        transport: TransportProtocol,
    ) -> Optional[Connection]:
        """
        Run CONNECTING → AUTHENTICATED → JOINED for a new transport.

        Args:
            credential: Bearer token presented by the client.
            transport: Channel to the client.

        Returns:
            The joined Connection, or None if the connection was rejected.
        """
        connection = Connection(transport)

        try:
            await transport.accept()
        except TransportError as exc:
            logger.warning("Handshake failed for %s: %s", connection.connection_id, exc)
            connection.mark_closed()
            return None

        try:
            identity = self._verifier.verify(credential)
        except AuthError as exc:
            connection.mark_closed()
            with self._lock:
                self._rejected += 1
            logger.warning(
                "Rejected connection %s: %s (%s)",
                connection.connection_id, type(exc).__name__, exc,
            )
            await transport.close(AUTH_ERROR_CLOSE_CODE, AUTH_ERROR_REASON)
            return None

        connection.authenticate(identity)
        connection.outbox = asyncio.Queue(maxsize=self._outbox_maxsize)
        self._join(connection)

        logger.info(
            "User %s connected via WebSocket (%s, role=%s)",
            connection.subject_id, connection.connection_id, connection.role,
        )

        # session_ready goes out before anything the writer sends
        greeting = create_session_ready(
            connection.subject_id,
            connection.role,
            connection.joined_rooms,
        )
        try:
            await asyncio.wait_for(transport.send(greeting), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Greeting %s timed out after %.1fs", connection, self._send_timeout)
        except TransportError as exc:
            logger.warning("Could not greet %s: %s", connection, exc)

        if connection.is_open:
            connection.writer = asyncio.create_task(
                self._write_loop(connection),
                name=f"Writer-{connection.connection_id}",
            )

        return connection

    def _join(self, connection: Connection) -> None:
        """AUTHENTICATED → JOINED: personal room, plus admin_room if privileged."""
        for room in self.rooms_for(connection.identity):
            self._registry.join(room, connection)

        with self._lock:
            connection.mark_joined()
            self._connections[connection.connection_id] = connection

    def rooms_for(self, identity: Identity) -> List[str]:
        """Standing room memberships for an identity."""
        rooms = [personal_room(identity.subject_id)]
        if identity.role in self._privileged_roles:
            rooms.append(ADMIN_ROOM)
        return rooms

    def release(self, connection: Connection) -> bool:
        """
        JOINED → CLOSED.

        Removes the connection from every room, then forgets it. Safe to call
        from any task or thread, any number of times.

        Returns:
            True if this call released the connection.
        """
        with self._lock:
            if not connection.mark_closed():
                return False
            self._registry.leave_all(connection)
            self._connections.pop(connection.connection_id, None)

        connection.stop_writer()

        logger.info(
            "User %s disconnected from WebSocket (%s)",
            connection.subject_id, connection.connection_id,
        )
        return True

    async def close(
        self,
        connection: Connection,
        code: int = NORMAL_CLOSURE,
        reason: str = "",
    ) -> bool:
        """
        Server-initiated close: release, then close the transport.

        Returns:
            True if this call released the connection.
        """
        released = self.release(connection)
        try:
            await connection.transport.close(code, reason)
        except TransportError as exc:
            logger.debug("Transport close for %s failed: %s", connection, exc)
        return released

    # ============================================================
    # Outbound
    # ============================================================

    async def _write_loop(self, connection: Connection) -> None:
        """Drain one connection's outbox in order. Runs until release() cancels it."""
        outbox = connection.outbox
        while True:
            frame = await outbox.get()
            try:
                await asyncio.wait_for(
                    connection.transport.send(frame),
                    timeout=self._send_timeout,
                )
            except asyncio.TimeoutError:
                self._count_send(ok=False)
                logger.warning(
                    "Send of %s to %s timed out after %.1fs",
                    frame.get("event"), connection, self._send_timeout,
                )
            except TransportError as exc:
                self._count_send(ok=False)
                logger.warning("Send of %s to %s failed: %s", frame.get("event"), connection, exc)
            except Exception:
                self._count_send(ok=False)
                logger.exception("Unexpected error sending %s to %s", frame.get("event"), connection)
            else:
                self._count_send(ok=True)
            finally:
                outbox.task_done()

    def _count_send(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self._sent += 1
            else:
                self._send_failures += 1

    async def flush(self) -> None:
        """Wait until every live connection's outbox has been written out."""
        outboxes = [c.outbox for c in self.connections() if c.outbox is not None]
        await asyncio.gather(*(outbox.join() for outbox in outboxes))

    # ============================================================
    # Lookup & Stats
    # ============================================================

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def connections(self) -> List[Connection]:
        """All joined connections."""
        with self._lock:
            return list(self._connections.values())

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    def get_stats(self) -> dict:
        """Get session statistics."""
        with self._lock:
            privileged = sum(
                1 for c in self._connections.values()
                if c.role in self._privileged_roles
            )
            return {
                "active_connections": len(self._connections),
                "privileged_connections": privileged,
                "rejected_connections": self._rejected,
                "sent_frames": self._sent,
                "failed_sends": self._send_failures,
            }
