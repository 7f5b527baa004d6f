"""Lifecycle controller for the realtime voice session.

Owns the single live session of a client: connect, manual reconnect,
microphone toggling and the refresh timer that replaces the session
before its ephemeral credential expires.

Concurrency:
- At most one negotiation is in flight. A new connect() cancels the
  previous one, whose caller receives SessionSuperseded.
- At most one refresh timer exists; it is a task cancelled on every
  connect, reconnect and close.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from voicelink.config import Settings, get_settings
from voicelink.core.events import ChannelEvent, EventChannel, EventKind
from voicelink.core.session import EphemeralCredential, Session, SessionState
from voicelink.core.tools import ToolInvocationBridge, ToolRegistry
from voicelink.core.transcript import Transcript, TranscriptEntry
from voicelink.exceptions import SessionSuperseded, VoicelinkError
from voicelink.logging_config import get_logger, sanitize_for_log
from voicelink.observability.metrics import SESSION_CONNECTS, SESSION_REFRESHES
from voicelink.prompts.assistant import build_session_update
from voicelink.services.realtime.negotiator import SessionConfigFactory, SessionNegotiator
from voicelink.services.realtime.protocol import MessageHandler
from voicelink.tools import register_default_tools

logger: Any = get_logger(__name__)

NegotiatorFactory = Callable[[MessageHandler, SessionConfigFactory], SessionNegotiator]
LogSink = Callable[[str], None]
TranscriptSink = Callable[[TranscriptEntry], None]

LIVE_STATES = {SessionState.REQUESTING, SessionState.NEGOTIATING, SessionState.CONNECTED}


class LifecycleController:
    """Drives one SessionNegotiator at a time on behalf of a UI."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        negotiator_factory: NegotiatorFactory | None = None,
        registry: ToolRegistry | None = None,
        on_log: LogSink | None = None,
        on_transcript: TranscriptSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._negotiator_factory = negotiator_factory or _default_negotiator_factory(
            self._settings
        )
        self._registry = registry if registry is not None else register_default_tools(
            ToolRegistry()
        )
        self._on_log = on_log
        self._on_transcript = on_transcript
        self._clock = clock

        self.channel = EventChannel()
        self.transcript = Transcript()
        self._bridge = ToolInvocationBridge(self._registry, self.channel, self.send)
        self._bridge.attach()
        self.channel.subscribe(self._on_event)

        self._negotiator: SessionNegotiator | None = None
        self._connect_task: asyncio.Task[Session] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._model = self._settings.default_model
        self._voice = self._settings.default_voice
        self._mic_enabled = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Negotiator state, or IDLE when nothing is live."""
        negotiator = self._negotiator
        if negotiator is None or negotiator.state not in (*LIVE_STATES, SessionState.CLOSING):
            return SessionState.IDLE
        return negotiator.state

    @property
    def session(self) -> Session | None:
        negotiator = self._negotiator
        if negotiator is None or negotiator.state != SessionState.CONNECTED:
            return None
        return negotiator.session

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def mic_enabled(self) -> bool:
        return self.state == SessionState.CONNECTED and self._mic_enabled

    @property
    def refresh_task(self) -> asyncio.Task[None] | None:
        return self._refresh_task

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def connect(self, model: str | None = None, voice: str | None = None) -> Session:
        """Replace any current session with a new one.

        Raises:
            SessionSuperseded: A later connect() took over before this one finished
            VoicelinkError: Connect failed (already logged; state is IDLE)
        """
        return await self._start(model or self._model, voice or self._voice, mic_enabled=True)

    async def reconnect(self) -> Session:
        """Manual reconnect with the current model and voice."""
        self._log(f"Reconnecting model={self._model} voice={self._voice}")
        return await self._start(self._model, self._voice, mic_enabled=True)

    async def toggle_mic(self) -> bool:
        """Flip the microphone, connecting first when there is no session.

        Returns the new mic state.
        """
        if self.state == SessionState.IDLE:
            await self.connect()
            return self.mic_enabled
        return self.set_mic(not self._mic_enabled)

    def set_mic(self, enabled: bool) -> bool:
        self._mic_enabled = bool(enabled)
        if self._negotiator is not None:
            self._negotiator.enable_mic(self._mic_enabled)
        self._log(f"Mic {'on' if self._mic_enabled else 'off'}")
        return self._mic_enabled

    def send(self, event: dict[str, Any]) -> None:
        """Send a client event over the live session's event channel."""
        if self._negotiator is None:
            logger.warning(f"No session, dropping {event.get('type')}")
            return
        self._negotiator.send(event)

    async def close(self) -> None:
        """Cancel timers and negotiation, release the transport, stop the channel."""
        self._cancel_refresh()
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        await self._teardown()
        self._mic_enabled = False
        await self.channel.stop()

    async def __aenter__(self) -> LifecycleController:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def refresh_delay(self, credential: EphemeralCredential) -> float:
        """Seconds until refresh: expiry minus the safety margin, floored."""
        remaining = credential.seconds_remaining(self._clock())
        delay = remaining - self._settings.refresh_safety_margin_seconds
        return max(delay, self._settings.refresh_min_delay_seconds)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _start(self, model: str, voice: str, *, mic_enabled: bool) -> Session:
        self._cancel_refresh()

        previous = self._connect_task
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.create_task(
            self._establish(previous, model, voice, mic_enabled),
            name="voicelink-connect",
        )
        self._connect_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.cancelled():
            raise SessionSuperseded(f"connect model={model} voice={voice} was superseded")
        return task.result()

    async def _establish(
        self,
        previous: asyncio.Task[Session] | None,
        model: str,
        voice: str,
        mic_enabled: bool,
    ) -> Session:
        if previous is not None:
            await asyncio.wait({previous})

        # The old transport is gone before the new one is requested
        await self._teardown()

        negotiator = self._negotiator_factory(self.channel.deliver, self._session_config)
        self._negotiator = negotiator
        self._model, self._voice = model, voice
        self.channel.start()

        try:
            session = await negotiator.connect(self._settings.server_url, model, voice)
        except asyncio.CancelledError:
            self._forget(negotiator)
            raise
        except Exception as e:
            SESSION_CONNECTS.labels(outcome="failed").inc()
            self._log(f"Connect error: {e}")
            self._forget(negotiator)
            raise

        self._mic_enabled = mic_enabled
        negotiator.enable_mic(mic_enabled)
        self._schedule_refresh(session.credential)
        SESSION_CONNECTS.labels(outcome="connected").inc()

        started = datetime.now(UTC).isoformat(timespec="seconds")
        self._log(f"Session started @ {started} model={session.model} voice={session.voice}")
        return session

    def _session_config(self, credential: EphemeralCredential) -> dict[str, Any]:
        return build_session_update(credential, self._registry)

    def _forget(self, negotiator: SessionNegotiator) -> None:
        if self._negotiator is negotiator:
            self._negotiator = None

    async def _teardown(self) -> None:
        negotiator, self._negotiator = self._negotiator, None
        if negotiator is not None:
            await negotiator.close()

    def _schedule_refresh(self, credential: EphemeralCredential) -> None:
        self._cancel_refresh()
        delay = self.refresh_delay(credential)
        logger.debug(f"Session refresh in {delay:.1f}s")
        self._refresh_task = asyncio.create_task(
            self._refresh_after(delay), name="voicelink-refresh"
        )

    def _cancel_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        # The refresh task itself reaches here through _start
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _refresh_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._refresh()

    async def _refresh(self) -> None:
        self._log(f"Refreshing session model={self._model} voice={self._voice}")
        SESSION_REFRESHES.inc()
        try:
            await self._start(self._model, self._voice, mic_enabled=self._mic_enabled)
        except SessionSuperseded:
            logger.debug("Refresh superseded by a newer connect")
        except VoicelinkError as e:
            logger.warning(f"Session refresh failed: {e}")

    async def _on_event(self, event: ChannelEvent) -> None:
        if event.transcript is not None:
            entry = self.transcript.add(event.transcript)
            if entry is not None and self._on_transcript is not None:
                self._on_transcript(entry)
            return

        if event.kind == EventKind.ERROR:
            error = event.payload.get("error")
            message = error.get("message") if isinstance(error, dict) else error
            self._log(f"Error: {message or sanitize_for_log(event.payload)}")
        elif event.kind == EventKind.WARNING:
            self._log(f"Warning: {event.payload.get('message') or event.type}")
        elif event.kind == EventKind.TOOL_STARTED and event.tool_call is not None:
            self._log(f"Tool {event.tool_call.name} started")
        elif event.kind == EventKind.TOOL_COMPLETED and event.tool_call is not None:
            self._log(f"Tool {event.tool_call.name} -> {event.tool_call.result}")
        elif event.kind == EventKind.TOOL_FAILED and event.tool_call is not None:
            self._log(f"Tool {event.tool_call.name} failed: {event.tool_call.error}")

    def _log(self, message: str) -> None:
        logger.info(message)
        if self._on_log is not None:
            self._on_log(message)


def _default_negotiator_factory(settings: Settings) -> NegotiatorFactory:
    def factory(
        on_message: MessageHandler, session_config: SessionConfigFactory
    ) -> SessionNegotiator:
        return SessionNegotiator(settings, on_message=on_message, session_config=session_config)

    return factory
