"""
Realtime Hub
------------
Entry points of the realtime layer.

Responsibilities:
- Run each connection's session to completion (handle_connection)
- Decode inbound frames into events
- Feed events through a single channel into the router (submit_event)
- Let server-side code push events (publish)
- Close every session on shutdown

One task runs per connection; a single worker task drains the router
channel, so events from one connection are routed in submission order and no
connection task ever calls into the router re-entrantly. Routing only fills
per-connection outboxes, so the worker never waits on a peer's socket.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Tuple

from ..auth.verifier import IdentityVerifier
from ..config import RealtimeConfig
from ..protocol.messages import Event, InvalidFrame, create_error
from ..transport.base import GOING_AWAY, TransportError, TransportProtocol
from .room_registry import RoomRegistry
from .router import EventRouter
from .session import Connection, SessionManager


logger = logging.getLogger(__name__)


_Envelope = Tuple[Event, Optional[Connection]]


class RealtimeHub:
    """
    Authenticated event-broadcast hub.

    Usage:
        hub = RealtimeHub(config)
        await hub.start()

        # Per connection (e.g. from a WebSocket endpoint)
        await hub.handle_connection(token, transport)

        # From server-side code
        await hub.publish(Event(EventType.EMERGENCY_ALERT, {...}))

        await hub.stop()
    """

    def __init__(
        self,
        config: RealtimeConfig,
        verifier: Optional[IdentityVerifier] = None,
        registry: Optional[RoomRegistry] = None,
    ):
        """
        Initialize the hub.

        Args:
            config: Hub configuration.
            verifier: Credential verifier (built from config if omitted).
            registry: Room registry (a fresh one if omitted).
        """
        self._config = config
        self._verifier = verifier or IdentityVerifier(
            secret=config.jwt_secret,
            algorithm=config.jwt_algorithm,
        )
        self._registry = registry or RoomRegistry()
        self._sessions = SessionManager(
            verifier=self._verifier,
            registry=self._registry,
            privileged_roles=config.privileged_roles,
            send_timeout_sec=config.send_timeout_sec,
            outbox_maxsize=config.outbox_maxsize,
        )
        self._router = EventRouter(registry=self._registry)

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self._invalid_frames = 0

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self) -> None:
        """Start the router worker. No-op if already running."""
        if self._worker is not None:
            return

        self._queue = asyncio.Queue(maxsize=self._config.queue_maxsize)
        self._worker = asyncio.create_task(self._router_loop(), name="RealtimeHub-Router")
        self._started_at = time.time()
        logger.info(
            "RealtimeHub started: privileged_roles=%s, send_timeout=%.1fs, outbox=%d",
            ",".join(self._config.privileged_roles),
            self._config.send_timeout_sec,
            self._config.outbox_maxsize,
        )

    async def stop(self) -> None:
        """
        Close every session, then stop the router worker.

        Events still queued are routed before the worker exits.
        """
        logger.info("Shutting down RealtimeHub...")

        for connection in self._sessions.connections():
            await self._sessions.close(connection, GOING_AWAY, "Server shutting down")

        if self._worker is not None:
            await self._queue.put(None)
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            self._queue = None

        logger.info("RealtimeHub shutdown complete")

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # ============================================================
    # Connections
    # ============================================================

    async def handle_connection(
        self,
        credential: Optional[str],
        transport: TransportProtocol,
    ) -> None:
        """
        Run one connection's session to completion.

        Returns when the peer disconnects, the transport fails, or the hub
        closes the session.

        Args:
            credential: Bearer token presented by the client.
            transport: Channel to the client.
        """
        connection = await self._sessions.open(credential, transport)
        if connection is None:
            return

        try:
            while connection.is_open:
                try:
                    frame = await transport.receive()
                except InvalidFrame as exc:
                    await self._reject_frame(connection, str(exc))
                    continue

                if frame is None:
                    break

                try:
                    event = Event.from_frame(frame)
                except InvalidFrame as exc:
                    await self._reject_frame(connection, str(exc))
                    continue

                if event is None:
                    logger.debug("Ignoring unknown event %r from %s", frame.get("event"), connection)
                    continue

                await self.submit_event(connection, event)
        except TransportError as exc:
            logger.warning("Transport error on %s: %s", connection, exc)
        finally:
            self._sessions.release(connection)

    async def _reject_frame(self, connection: Connection, message: str) -> None:
        self._invalid_frames += 1
        logger.warning("Malformed frame from %s: %s", connection, message)
        try:
            await connection.transport.send(create_error(message))
        except TransportError as exc:
            logger.debug("Could not report malformed frame to %s: %s", connection, exc)

    # ============================================================
    # Events
    # ============================================================

    async def submit_event(self, connection: Optional[Connection], event: Event) -> None:
        """
        Hand an event to the router.

        Args:
            connection: Origin connection (None for server-side events).
            event: Event to route.

        Raises:
            RuntimeError: If the hub has not been started.
        """
        if self._queue is None:
            raise RuntimeError("RealtimeHub not started. Call start() first.")
        await self._queue.put((event, connection))

    async def publish(self, event: Event) -> None:
        """Route a server-originated event (no sender to exclude)."""
        await self.submit_event(None, event)

    async def drain(self) -> None:
        """Wait until every queued event has been routed and written out."""
        if self._queue is not None:
            await self._queue.join()
        await self._sessions.flush()

    async def _router_loop(self) -> None:
        """Single consumer of the router channel. Runs until a None sentinel."""
        while True:
            item: Optional[_Envelope] = await self._queue.get()
            try:
                if item is None:
                    break
                event, origin = item
                self._router.route(event, origin)
            except Exception:
                logger.exception("Routing failed, event dropped")
            finally:
                self._queue.task_done()

    # ============================================================
    # Accessors & Stats
    # ============================================================

    @property
    def config(self) -> RealtimeConfig:
        return self._config

    @property
    def verifier(self) -> IdentityVerifier:
        return self._verifier

    @property
    def registry(self) -> RoomRegistry:
        return self._registry

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def router(self) -> EventRouter:
        return self._router

    def get_stats(self) -> dict:
        """Get hub statistics."""
        return {
            "running": self.running,
            "uptime_sec": time.time() - self._started_at if self._started_at else 0.0,
            "queued_events": self._queue.qsize() if self._queue is not None else 0,
            "invalid_frames": self._invalid_frames,
            "sessions": self._sessions.get_stats(),
            "rooms": self._registry.get_stats(),
            "routing": self._router.get_stats(),
        }
