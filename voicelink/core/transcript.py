"""Transcript accumulation for display.

Folds transcript fragments into one entry per turn: deltas extend the open
entry, the final fragment replaces its text and closes it. A final fragment
for an already closed turn is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass

from voicelink.core.events import TranscriptEvent, TranscriptSource


@dataclass
class TranscriptEntry:
    """One turn of recognized (input) or generated (output) speech."""

    source: TranscriptSource
    text: str
    final: bool
    turn_id: str | None
    sequence: int


class Transcript:
    """Ordered transcript entries for the current client."""

    def __init__(self) -> None:
        self.entries: list[TranscriptEntry] = []
        self._open: dict[tuple[TranscriptSource, str | None], TranscriptEntry] = {}
        self._closed: set[tuple[TranscriptSource, str]] = set()

    def add(self, event: TranscriptEvent) -> TranscriptEntry | None:
        """Apply a fragment. Returns the affected entry, or None if ignored."""
        key = (event.source, event.turn_id)
        if event.turn_id is not None and (event.source, event.turn_id) in self._closed:
            return None

        entry = self._open.get(key)
        if entry is None:
            entry = TranscriptEntry(
                source=event.source,
                text="",
                final=False,
                turn_id=event.turn_id,
                sequence=event.sequence,
            )
            self.entries.append(entry)

        if event.final:
            entry.text = event.text
            entry.final = True
            self._open.pop(key, None)
            if event.turn_id is not None:
                self._closed.add((event.source, event.turn_id))
        else:
            entry.text += event.text
            self._open[key] = entry

        entry.sequence = event.sequence
        return entry

    def final_entries(self) -> list[TranscriptEntry]:
        return [e for e in self.entries if e.final]

    def clear(self) -> None:
        self.entries.clear()
        self._open.clear()
        self._closed.clear()

    def __len__(self) -> int:
        return len(self.entries)
