#!/usr/bin/env python3
"""Interactive realtime voice client.

Connects through a running voicelink broker, streams the microphone to the
realtime service and prints transcripts as they arrive.

Usage:
    python scripts/voice_client.py [--model gpt-realtime] [--voice marin]

Commands: Enter (toggle mic), /reconnect, /transcript, /quit
"""

import argparse
import asyncio

from voicelink.config import get_settings
from voicelink.core.events import TranscriptSource
from voicelink.core.lifecycle import LifecycleController
from voicelink.core.transcript import TranscriptEntry
from voicelink.exceptions import SessionSuperseded, VoicelinkError
from voicelink.logging_config import setup_logging


def print_log(line: str) -> None:
    print(f"  · {line}")


def print_transcript(entry: TranscriptEntry) -> None:
    if not entry.final:
        return
    who = "👤 You" if entry.source == TranscriptSource.INPUT else "🤖 Agent"
    print(f"{who}: {entry.text}")


async def main(model: str | None, voice: str | None) -> None:
    settings = get_settings()
    setup_logging(level="WARNING", enable_file=False)

    print("=" * 60)
    print("🎙️  voicelink - Realtime Voice Client")
    print("=" * 60)
    print(f"\nBroker: {settings.server_url}")
    print("Commands: Enter (toggle mic), /reconnect, /transcript, /quit\n")

    async with LifecycleController(
        settings, on_log=print_log, on_transcript=print_transcript
    ) as controller:
        try:
            await controller.connect(model, voice)
        except VoicelinkError:
            print("  (press Enter to retry)")

        while True:
            command = (await asyncio.to_thread(input, "")).strip().lower()

            if command == "/quit":
                print("\n👋 Goodbye!")
                break

            try:
                if command == "/reconnect":
                    await controller.reconnect()
                elif command == "/transcript":
                    for entry in controller.transcript.final_entries():
                        print(f"  [{entry.source.value}] {entry.text}")
                elif not command:
                    await controller.toggle_mic()
                else:
                    print(f"  Unknown command: {command}")
            except SessionSuperseded:
                continue
            except VoicelinkError:
                # Already reported through the log sink
                continue


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Realtime voice client")
    parser.add_argument("--model", default=None, help="Realtime model")
    parser.add_argument("--voice", default=None, help="Output voice")
    args = parser.parse_args()

    try:
        asyncio.run(main(args.model, args.voice))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
