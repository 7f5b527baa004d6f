"""Realtime transport protocols and data types."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

# Inbound data channel messages (raw JSON text)
MessageHandler = Callable[[str], None]


class AudioCapture(Protocol):
    """Local microphone capture scoped to one session."""

    @property
    def tracks(self) -> list[Any]:
        """Outgoing media tracks to attach to the transport."""
        ...

    @property
    def enabled(self) -> bool:
        ...

    def set_enabled(self, enabled: bool) -> None:
        """Gate the outgoing audio without renegotiation."""
        ...

    async def close(self) -> None:
        """Release the capture device. Safe to call more than once."""
        ...


class PeerTransport(Protocol):
    """Media + data path to the remote realtime service."""

    def add_track(self, track: Any) -> None:
        ...

    async def create_offer(self) -> str:
        """Create and apply the local offer, returning its SDP."""
        ...

    async def apply_answer(self, sdp: str) -> None:
        ...

    async def wait_ready(self) -> None:
        """Block until media is connected and the event channel is open.

        Raises:
            NegotiationFailure: If the transport reports failure first
        """
        ...

    def send(self, event: dict[str, Any]) -> None:
        """Send a JSON event over the event channel."""
        ...

    async def close(self) -> None:
        """Tear down the connection. Safe to call more than once."""
        ...


class Signaling(Protocol):
    """Offer/answer exchange with the realtime endpoint."""

    async def exchange(self, offer_sdp: str, secret: str, model: str) -> str:
        """Send the offer authenticated with secret; return the answer SDP.

        Raises:
            NegotiationFailure: On non-2xx or unreachable endpoint
        """
        ...


# Factories injected into the negotiator so devices and network can be replaced
CaptureFactory = Callable[[], "AudioCapture"]
TransportFactory = Callable[[MessageHandler], "PeerTransport"]
