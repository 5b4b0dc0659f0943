"""
Transport Interface
-------------------
The bidirectional per-connection channel the hub runs on.

The hub only needs to accept a handshake, send and receive frames, and learn
about disconnects. Any object providing these coroutines can be handed to
RealtimeHub.handle_connection().
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ..protocol.messages import Frame


# Close codes
NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
AUTH_ERROR_CLOSE_CODE = 4401
AUTH_ERROR_REASON = "Authentication error"


class TransportError(Exception):
    """Base class for transport failures."""


class SendFailed(TransportError):
    """A frame could not be written to the peer."""


class TransportClosed(TransportError):
    """The channel is already closed."""


@runtime_checkable
class TransportProtocol(Protocol):
    """
    Protocol defining the transport interface.

    receive() returns None once the peer has gone away; a malformed frame
    raises InvalidFrame and leaves the channel usable.
    """

    async def accept(self) -> None:
        """Complete the transport-level handshake."""
        ...

    async def send(self, message: Frame) -> None:
        """Send one frame. Raises SendFailed or TransportClosed."""
        ...

    async def receive(self) -> Optional[Frame]:
        """Next inbound frame, or None on disconnect."""
        ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the channel. Safe to call more than once."""
        ...

    @property
    def closed(self) -> bool:
        """Whether the channel is closed."""
        ...
