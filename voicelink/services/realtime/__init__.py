"""Realtime transport: offer/answer negotiation and the WebRTC media path.

aiortc-backed classes live in voicelink.services.realtime.webrtc and are
imported lazily so the negotiator can run against other transports.
"""

from voicelink.services.realtime.negotiator import SessionNegotiator
from voicelink.services.realtime.protocol import (
    AudioCapture,
    CaptureFactory,
    MessageHandler,
    PeerTransport,
    Signaling,
    TransportFactory,
)
from voicelink.services.realtime.signaling import HttpSignaling

__all__ = [
    # Protocols
    "AudioCapture",
    "PeerTransport",
    "Signaling",
    "CaptureFactory",
    "TransportFactory",
    "MessageHandler",
    # Implementation
    "SessionNegotiator",
    "HttpSignaling",
]
