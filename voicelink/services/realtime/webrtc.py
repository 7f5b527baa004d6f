"""WebRTC transport and microphone capture built on aiortc."""

from __future__ import annotations

import asyncio
import fractions
import json
from collections.abc import Callable
from typing import Any

import av
from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer

from voicelink.config import Settings, get_settings
from voicelink.exceptions import DeviceAccessDenied, NegotiationFailure
from voicelink.logging_config import get_logger
from voicelink.services.realtime.protocol import MessageHandler

logger: Any = get_logger(__name__)

# Data channel name the realtime service reads client events from
EVENTS_CHANNEL = "oai-events"


class GatedAudioTrack(MediaStreamTrack):
    """Audio track that forwards a source track, or silence while disabled.

    Muting this way keeps the RTP stream and the negotiated session intact.
    """

    kind = "audio"

    def __init__(self, source: MediaStreamTrack, enabled: bool = True) -> None:
        super().__init__()
        self._source = source
        self.enabled = enabled

    async def recv(self) -> av.AudioFrame:
        frame = await self._source.recv()
        if self.enabled:
            return frame
        return silence_like(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


def silence_like(frame: av.AudioFrame) -> av.AudioFrame:
    """Build a zeroed frame with the same format, layout and timing as frame."""
    silent = av.AudioFrame(
        format=frame.format.name,
        layout=frame.layout.name,
        samples=frame.samples,
    )
    for p in silent.planes:
        p.update(bytes(p.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    silent.time_base = frame.time_base or fractions.Fraction(1, frame.sample_rate)
    return silent


class MicrophoneCapture:
    """Capture device opened through FFmpeg (pulse, avfoundation, dshow...)."""

    def __init__(
        self,
        device: str = "default",
        input_format: str | None = "pulse",
        options: dict[str, str] | None = None,
    ) -> None:
        try:
            self._player = MediaPlayer(device, format=input_format, options=options or {})
        except (OSError, ValueError, av.error.FFmpegError) as e:
            raise DeviceAccessDenied(f"Cannot open capture device {device!r}: {e}") from e

        if self._player.audio is None:
            raise DeviceAccessDenied(f"Capture device {device!r} has no audio stream")

        self._track = GatedAudioTrack(self._player.audio)
        self._closed = False
        logger.debug(f"Opened capture device {device} ({input_format})")

    @property
    def tracks(self) -> list[MediaStreamTrack]:
        return [self._track]

    @property
    def enabled(self) -> bool:
        return self._track.enabled

    def set_enabled(self, enabled: bool) -> None:
        self._track.enabled = bool(enabled)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._track.stop()
        logger.debug("Capture device released")


class WebRTCTransport:
    """RTCPeerConnection carrying mic audio out, model audio in, and a JSON event channel."""

    def __init__(
        self,
        on_message: MessageHandler,
        *,
        ice_servers: list[dict[str, Any]] | None = None,
        on_track: Callable[[MediaStreamTrack], None] | None = None,
    ) -> None:
        configuration = None
        if ice_servers:
            configuration = RTCConfiguration(
                iceServers=[
                    RTCIceServer(
                        urls=server["urls"],
                        username=server.get("username"),
                        credential=server.get("credential"),
                    )
                    for server in ice_servers
                ]
            )

        self._pc = RTCPeerConnection(configuration=configuration)
        self._on_message = on_message
        self._on_track = on_track
        self._sink = MediaBlackhole()
        self._connected = asyncio.Event()
        self._channel_open = asyncio.Event()
        self._failed = asyncio.Event()
        self._closed = False

        self._channel = self._pc.createDataChannel(EVENTS_CHANNEL)

        @self._channel.on("open")
        def on_open() -> None:
            logger.debug("Event channel open")
            self._channel_open.set()

        @self._channel.on("message")
        def on_message(message: str | bytes) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            self._on_message(message)

        @self._pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            if track.kind != "audio":
                return
            if self._on_track is not None:
                self._on_track(track)
            else:
                self._sink.addTrack(track)

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.info(f"Connection state: {state}")
            if state == "connected":
                self._connected.set()
            elif state in ("failed", "closed"):
                self._failed.set()

    def add_track(self, track: MediaStreamTrack) -> None:
        self._pc.addTrack(track)

    async def create_offer(self) -> str:
        # aiortc gathers ICE candidates inside setLocalDescription
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._pc.localDescription.sdp

    async def apply_answer(self, sdp: str) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))

    async def wait_ready(self) -> None:
        ready = asyncio.ensure_future(self._both_ready())
        failed = asyncio.ensure_future(self._failed.wait())
        try:
            await asyncio.wait({ready, failed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()
            failed.cancel()

        if self._failed.is_set():
            raise NegotiationFailure(
                f"Transport failed before ready ({self._pc.connectionState})",
                body=self._pc.connectionState,
            )
        if self._on_track is None:
            await self._sink.start()

    async def _both_ready(self) -> None:
        await self._connected.wait()
        await self._channel_open.wait()

    def send(self, event: dict[str, Any]) -> None:
        if self._channel.readyState != "open":
            logger.warning(f"Dropping {event.get('type')} - event channel not open")
            return
        self._channel.send(json.dumps(event))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._sink.stop()
        await self._pc.close()
        logger.debug("Peer connection closed")


def open_microphone(settings: Settings | None = None) -> MicrophoneCapture:
    """Default capture factory driven by settings."""
    s = settings or get_settings()
    return MicrophoneCapture(device=s.capture_device, input_format=s.capture_format)
