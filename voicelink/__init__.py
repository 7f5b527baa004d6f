"""voicelink - realtime voice session broker and client lifecycle."""

__version__ = "0.1.0"
