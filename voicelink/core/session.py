"""Realtime session data model."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum


class SessionState(str, Enum):
    """Lifecycle of one negotiated realtime session."""

    IDLE = "idle"
    REQUESTING = "requesting"  # Fetching an ephemeral credential
    NEGOTIATING = "negotiating"  # Offer/answer exchange in progress
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


@dataclass(frozen=True, slots=True)
class EphemeralCredential:
    """Short-lived secret authorizing exactly one transport negotiation."""

    secret: str = field(repr=False)
    expires_at: float  # epoch seconds
    model: str
    voice: str

    def seconds_remaining(self, now: float | None = None) -> float:
        return self.expires_at - (time.time() if now is None else now)


@dataclass
class Session:
    """The single live session owned by a client.

    The credential is consumed by negotiation and kept only for its expiry.
    """

    credential: EphemeralCredential
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: SessionState = SessionState.IDLE

    @property
    def model(self) -> str:
        return self.credential.model

    @property
    def voice(self) -> str:
        return self.credential.voice

    @property
    def expires_at(self) -> float:
        return self.credential.expires_at
