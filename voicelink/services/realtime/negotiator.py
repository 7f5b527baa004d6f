"""Session negotiator: credential → offer/answer → live media + event channel.

States:
    IDLE → REQUESTING → NEGOTIATING → CONNECTED → CLOSING → CLOSED
    FAILED is reachable from any non-terminal state.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from voicelink.config import Settings, get_settings
from voicelink.core.session import EphemeralCredential, Session, SessionState
from voicelink.exceptions import DeviceAccessDenied, NegotiationFailure
from voicelink.logging_config import get_logger
from voicelink.observability.metrics import NEGOTIATION_LATENCY
from voicelink.services.credentials.client import BrokerClient, CredentialSource
from voicelink.services.realtime.protocol import (
    AudioCapture,
    CaptureFactory,
    MessageHandler,
    PeerTransport,
    Signaling,
    TransportFactory,
)
from voicelink.services.realtime.signaling import HttpSignaling

logger: Any = get_logger(__name__)

# Builds the session.update sent once the event channel opens
SessionConfigFactory = Callable[[EphemeralCredential], dict[str, Any]]

CONNECTABLE_STATES = {SessionState.IDLE, SessionState.CLOSED, SessionState.FAILED}


class SessionNegotiator:
    """Owns the capture device and transport of one realtime session.

    A negotiator can be reused after close() or a failure; it never holds
    more than one live transport.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        credentials: CredentialSource | None = None,
        signaling: Signaling | None = None,
        capture_factory: CaptureFactory | None = None,
        transport_factory: TransportFactory | None = None,
        on_message: MessageHandler | None = None,
        session_config: SessionConfigFactory | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._credentials = credentials or BrokerClient(
            default_ttl_seconds=self._settings.credential_ttl_seconds
        )
        self._signaling = signaling or HttpSignaling(
            self._settings.realtime_url,
            timeout_seconds=self._settings.negotiation_timeout_seconds,
        )
        self._capture_factory = capture_factory or _default_capture_factory(self._settings)
        self._transport_factory = transport_factory or _default_transport_factory
        self._on_message = on_message or (lambda _raw: None)
        self._session_config = session_config

        self._state = SessionState.IDLE
        self._session: Session | None = None
        self._capture: AudioCapture | None = None
        self._transport: PeerTransport | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def mic_enabled(self) -> bool:
        return self._capture is not None and self._capture.enabled

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            logger.debug(f"Negotiator state {self._state.value} -> {state.value}")
        self._state = state
        if self._session is not None:
            self._session.state = state

    async def connect(self, server_url: str, model: str, voice: str) -> Session:
        """Establish a realtime session.

        Args:
            server_url: Broker base URL
            model: Realtime model selector
            voice: Output voice

        Returns:
            The connected Session

        Raises:
            DeviceAccessDenied: Capture could not be opened (state stays IDLE)
            CredentialError: Broker failure kinds, passed through
            NegotiationFailure: Non-2xx answer, transport failure, or timeout
        """
        if self._state not in CONNECTABLE_STATES:
            raise RuntimeError(f"connect() while {self._state.value}")

        self._session = None
        self._set_state(SessionState.IDLE)

        # 1. Local capture; nothing else is allocated yet
        try:
            self._capture = self._capture_factory()
        except DeviceAccessDenied:
            self._capture = None
            raise

        start = time.perf_counter()
        try:
            # 2. Ephemeral credential
            self._set_state(SessionState.REQUESTING)
            credential = await self._credentials.request_credential(server_url, model, voice)
            self._session = Session(credential=credential, state=self._state)

            # 3-4. Offer/answer and transport readiness, bounded
            self._set_state(SessionState.NEGOTIATING)
            try:
                await asyncio.wait_for(
                    self._negotiate(credential),
                    timeout=self._settings.negotiation_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise NegotiationFailure(
                    f"Negotiation timed out after {self._settings.negotiation_timeout_seconds:.0f}s",
                    body="timeout",
                ) from e

        except asyncio.CancelledError:
            await self._release()
            self._set_state(SessionState.CLOSED)
            raise
        except Exception:
            await self._release()
            self._set_state(SessionState.FAILED)
            raise

        self._set_state(SessionState.CONNECTED)
        NEGOTIATION_LATENCY.observe(time.perf_counter() - start)
        logger.info(
            f"Realtime session {self._session.id} connected model={credential.model} "
            f"voice={credential.voice}"
        )

        if self._session_config is not None:
            self.send(self._session_config(credential))

        return self._session

    async def _negotiate(self, credential: EphemeralCredential) -> None:
        assert self._capture is not None
        transport = self._transport_factory(self._on_message)
        self._transport = transport
        for track in self._capture.tracks:
            transport.add_track(track)

        offer_sdp = await transport.create_offer()
        answer_sdp = await self._signaling.exchange(
            offer_sdp, credential.secret, credential.model
        )
        await transport.apply_answer(answer_sdp)
        await transport.wait_ready()

    def enable_mic(self, enabled: bool) -> None:
        """Toggle capture enablement without renegotiation."""
        if self._capture is None:
            return
        self._capture.set_enabled(bool(enabled))

    def send(self, event: dict[str, Any]) -> None:
        """Send a client event to the remote peer, if connected."""
        if self._transport is None or self._state != SessionState.CONNECTED:
            logger.warning(f"Not connected, dropping {event.get('type')}")
            return
        self._transport.send(event)

    async def close(self) -> None:
        """Release capture and transport. Idempotent."""
        if self._state in (SessionState.CLOSED, SessionState.CLOSING):
            return
        if self._capture is None and self._transport is None:
            self._set_state(SessionState.CLOSED)
            return

        self._set_state(SessionState.CLOSING)
        try:
            await self._release()
        finally:
            self._set_state(SessionState.CLOSED)
        if self._session is not None:
            logger.info(f"Realtime session {self._session.id} closed")

    async def _release(self) -> None:
        """Close transport then capture; both attempts always run."""
        transport, self._transport = self._transport, None
        capture, self._capture = self._capture, None
        try:
            if transport is not None:
                await transport.close()
        finally:
            if capture is not None:
                try:
                    await capture.close()
                except Exception as e:
                    logger.error(f"Error releasing capture device: {e}")


def _default_capture_factory(settings: Settings) -> CaptureFactory:
    def factory() -> AudioCapture:
        from voicelink.services.realtime.webrtc import open_microphone

        return open_microphone(settings)

    return factory


def _default_transport_factory(on_message: MessageHandler) -> PeerTransport:
    from voicelink.services.realtime.webrtc import WebRTCTransport

    return WebRTCTransport(on_message)
