"""Prompt templates and session configuration builders."""

from voicelink.prompts.assistant import AGENT_INSTRUCTIONS, build_session_update

__all__ = ["AGENT_INSTRUCTIONS", "build_session_update"]
