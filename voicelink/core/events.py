"""Inbound event demultiplexing for the realtime data channel.

Every message is classified into a closed set of EventKind values. Malformed
payloads are logged verbatim and dropped; unrecognized types are delivered as
EventKind.UNKNOWN. Subscribers see events in arrival order.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import json
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from voicelink.exceptions import MalformedEvent
from voicelink.logging_config import get_logger, redact_secret
from voicelink.observability.metrics import MALFORMED_EVENTS

logger: Any = get_logger(__name__)


class EventKind(str, Enum):
    """Closed set of event kinds."""

    TRANSCRIPT_DELTA = "transcript-delta"
    TRANSCRIPT_FINAL = "transcript-final"
    DEBUG = "debug"
    WARNING = "warning"
    ERROR = "error"
    TOOL_CALL = "tool-call"
    TOOL_STARTED = "tool-started"
    TOOL_COMPLETED = "tool-completed"
    TOOL_FAILED = "tool-failed"
    UNKNOWN = "unknown"


class TranscriptSource(str, Enum):
    """Who is speaking: the user (input) or the model (output)."""

    INPUT = "input"
    OUTPUT = "output"


# Wire type -> (kind, transcript source)
TYPE_MAP: dict[str, tuple[EventKind, TranscriptSource | None]] = {
    # Agents SDK spellings
    "response.delta": (EventKind.TRANSCRIPT_DELTA, TranscriptSource.OUTPUT),
    "response.completed": (EventKind.TRANSCRIPT_FINAL, TranscriptSource.OUTPUT),
    "input_audio.transcript.delta": (EventKind.TRANSCRIPT_DELTA, TranscriptSource.INPUT),
    "input_audio.transcript.completed": (EventKind.TRANSCRIPT_FINAL, TranscriptSource.INPUT),
    # Realtime API spellings
    "response.audio_transcript.delta": (EventKind.TRANSCRIPT_DELTA, TranscriptSource.OUTPUT),
    "response.audio_transcript.done": (EventKind.TRANSCRIPT_FINAL, TranscriptSource.OUTPUT),
    "response.output_audio_transcript.delta": (
        EventKind.TRANSCRIPT_DELTA,
        TranscriptSource.OUTPUT,
    ),
    "response.output_audio_transcript.done": (
        EventKind.TRANSCRIPT_FINAL,
        TranscriptSource.OUTPUT,
    ),
    "response.text.delta": (EventKind.TRANSCRIPT_DELTA, TranscriptSource.OUTPUT),
    "response.text.done": (EventKind.TRANSCRIPT_FINAL, TranscriptSource.OUTPUT),
    "response.output_text.delta": (EventKind.TRANSCRIPT_DELTA, TranscriptSource.OUTPUT),
    "response.output_text.done": (EventKind.TRANSCRIPT_FINAL, TranscriptSource.OUTPUT),
    "conversation.item.input_audio_transcription.delta": (
        EventKind.TRANSCRIPT_DELTA,
        TranscriptSource.INPUT,
    ),
    "conversation.item.input_audio_transcription.completed": (
        EventKind.TRANSCRIPT_FINAL,
        TranscriptSource.INPUT,
    ),
    # Diagnostics
    "debug": (EventKind.DEBUG, None),
    "warning": (EventKind.WARNING, None),
    "error": (EventKind.ERROR, None),
    "conversation.item.input_audio_transcription.failed": (EventKind.WARNING, None),
    # Tools
    "tool.call": (EventKind.TOOL_CALL, None),
    "response.function_call_arguments.done": (EventKind.TOOL_CALL, None),
    "tool.started": (EventKind.TOOL_STARTED, None),
    "tool.completed": (EventKind.TOOL_COMPLETED, None),
    "tool.failed": (EventKind.TOOL_FAILED, None),
}

# Session lifecycle chatter that is expected and only worth a debug line
DEBUG_TYPES = {
    "session.created",
    "session.updated",
    "conversation.created",
    "conversation.item.created",
    "conversation.item.added",
    "conversation.item.done",
    "conversation.item.truncated",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
    "input_audio_buffer.committed",
    "input_audio_buffer.cleared",
    "output_audio_buffer.started",
    "output_audio_buffer.stopped",
    "output_audio_buffer.cleared",
    "response.created",
    "response.done",
    "response.output_item.added",
    "response.output_item.done",
    "response.content_part.added",
    "response.content_part.done",
    "response.audio.done",
    "response.output_audio.done",
    "response.function_call_arguments.delta",
    "rate_limits.updated",
}

# Fields identifying the turn a transcript fragment belongs to, most specific first
TURN_ID_FIELDS = ("item_id", "response_id")


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """A transcript fragment. A final fragment closes its turn."""

    source: TranscriptSource
    text: str
    final: bool
    sequence: int
    turn_id: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A remote request to run a local tool, and its outcome once handled."""

    name: str
    arguments: Any
    correlation_id: str
    result: dict[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ChannelEvent:
    """A typed event delivered to subscribers."""

    kind: EventKind
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    transcript: TranscriptEvent | None = None
    tool_call: ToolCall | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


Subscriber = Callable[[ChannelEvent], Awaitable[None] | None]


class EventChannel:
    """Ordered demultiplexer between the transport and its subscribers.

    deliver() and emit() are non-blocking and safe to call from transport
    callbacks; a single consumer task drains the queue in order.
    """

    def __init__(self, max_finalized_turns: int = 512) -> None:
        self._subscribers: list[Subscriber] = []
        self._queue: asyncio.Queue[str | ChannelEvent | None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._sequence = itertools.count(1)
        self._finalized: OrderedDict[tuple[str, str], None] = OrderedDict()
        self._max_finalized_turns = max_finalized_turns
        # Last id-less final per source, cleared by the next delta
        self._last_anonymous_final: dict[str, str] = {}

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def deliver(self, raw: str) -> None:
        """Queue a raw inbound message."""
        self._queue.put_nowait(raw)

    def emit(self, event: ChannelEvent) -> None:
        """Queue a locally produced event (tool activity) on the same ordered path."""
        self._queue.put_nowait(event)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="voicelink-event-channel")

    async def stop(self) -> None:
        """Drain queued events, then stop the consumer."""
        if not self.running:
            return
        self._queue.put_nowait(None)
        task = self._task
        assert task is not None
        if task is asyncio.current_task():
            return
        await task
        self._task = None

    async def join(self) -> None:
        """Wait until everything queued so far has been dispatched."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                if isinstance(item, ChannelEvent):
                    await self._dispatch(item)
                else:
                    await self.process(item)
            except Exception as e:
                logger.error(f"Event channel error: {e}")
            finally:
                self._queue.task_done()

    async def process(self, raw: str) -> ChannelEvent | None:
        """Parse and dispatch one raw message immediately.

        Returns the dispatched event, or None if it was dropped.
        """
        try:
            event = self.parse(raw)
        except MalformedEvent as e:
            MALFORMED_EVENTS.inc()
            logger.warning(f"[data] {e.raw}")
            return None

        if event is None:
            return None
        await self._dispatch(event)
        return event

    def parse(self, raw: str | bytes) -> ChannelEvent | None:
        """Classify one raw message.

        Returns None for transcript fragments without text and for duplicate
        final fragments.

        Raises:
            MalformedEvent: Payload is not a JSON object with a string type
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedEvent(f"Invalid JSON: {e}", raw=str(raw)) from e
        if not isinstance(payload, dict):
            raise MalformedEvent("Event is not an object", raw=raw)

        event_type = payload.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise MalformedEvent("Event has no type", raw=raw)

        kind, source = TYPE_MAP.get(event_type, (None, None))
        if kind is None:
            if event_type in DEBUG_TYPES:
                return ChannelEvent(kind=EventKind.DEBUG, type=event_type, payload=payload)
            logger.info(f"[event] {redact_secret(raw)}")
            return ChannelEvent(kind=EventKind.UNKNOWN, type=event_type, payload=payload)

        if kind in (EventKind.TRANSCRIPT_DELTA, EventKind.TRANSCRIPT_FINAL):
            assert source is not None
            transcript = self._transcript(kind, source, payload)
            if transcript is None:
                return None
            return ChannelEvent(
                kind=kind, type=event_type, payload=payload, transcript=transcript
            )

        if kind == EventKind.TOOL_CALL:
            name = payload.get("name")
            if not isinstance(name, str) or not name:
                raise MalformedEvent("Tool call has no name", raw=raw)
            call = ToolCall(
                name=name,
                arguments=payload.get("arguments"),
                correlation_id=str(
                    payload.get("call_id") or payload.get("id") or payload.get("event_id") or ""
                ),
            )
            return ChannelEvent(kind=kind, type=event_type, payload=payload, tool_call=call)

        return ChannelEvent(kind=kind, type=event_type, payload=payload)

    def _transcript(
        self, kind: EventKind, source: TranscriptSource, payload: dict[str, Any]
    ) -> TranscriptEvent | None:
        final = kind == EventKind.TRANSCRIPT_FINAL
        if final:
            text = payload.get("transcript") or payload.get("text") or payload.get("delta")
        else:
            text = payload.get("delta") or payload.get("text") or payload.get("transcript")
        if not isinstance(text, str) or not text:
            return None

        turn_id = _turn_id(payload)
        if not final:
            self._last_anonymous_final.pop(source.value, None)
        elif self._is_duplicate_final(source, turn_id, payload.get("event_id"), text):
            return None

        return TranscriptEvent(
            source=source,
            text=text,
            final=final,
            sequence=next(self._sequence),
            turn_id=turn_id,
        )

    def _is_duplicate_final(
        self, source: TranscriptSource, turn_id: str | None, event_id: Any, text: str
    ) -> bool:
        if turn_id is not None:
            key = (source.value, turn_id)
        elif isinstance(event_id, str) and event_id:
            key = (source.value, f"event:{event_id}")
        else:
            # Without an identity only a back-to-back repeat is a duplicate
            if self._last_anonymous_final.get(source.value) == text:
                logger.debug(f"Suppressed repeated final transcript from {source.value}")
                return True
            self._last_anonymous_final[source.value] = text
            return False

        if key in self._finalized:
            logger.debug(f"Suppressed duplicate final transcript for {key[1]}")
            return True
        self._finalized[key] = None
        while len(self._finalized) > self._max_finalized_turns:
            self._finalized.popitem(last=False)
        return False

    async def _dispatch(self, event: ChannelEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscriber failed on {event.type}: {e}")


def _turn_id(payload: dict[str, Any]) -> str | None:
    for name in TURN_ID_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value:
            if name == "item_id" and "content_index" in payload:
                return f"{value}:{payload['content_index']}"
            return value
    return None
