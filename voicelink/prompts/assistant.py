"""Instructions and session configuration for the voice agent."""

from __future__ import annotations

from typing import Any

from voicelink.core.session import EphemeralCredential
from voicelink.core.tools import ToolRegistry

AGENT_INSTRUCTIONS = (
    "You are a fast, friendly voice agent. Keep answers concise. "
    "When asked for the current time, call the getTime tool with "
    "'America/Los_Angeles' unless a timezone is given."
)

TRANSCRIPTION_MODEL = "whisper-1"


def build_session_update(
    credential: EphemeralCredential,
    registry: ToolRegistry | None = None,
    instructions: str = AGENT_INSTRUCTIONS,
) -> dict[str, Any]:
    """Build the session.update event sent once the event channel opens.

    Enables input transcription so user speech shows up in the transcript,
    and advertises every registered tool.
    """
    session: dict[str, Any] = {
        "instructions": instructions,
        "voice": credential.voice,
        "input_audio_transcription": {"model": TRANSCRIPTION_MODEL},
    }
    if registry is not None and len(registry):
        session["tools"] = registry.definitions()
        session["tool_choice"] = "auto"
    return {"type": "session.update", "session": session}
