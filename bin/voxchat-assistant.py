#!/usr/bin/env python3
"""voxchat voice assistant daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from voxchat.config_persist import ConfigPersister
from voxchat.voice.assistant import VoiceAssistant
from voxchat.voice.backends import WyomingSpeechRecognizer, WyomingSpeechSynthesizer
from voxchat.voice.config import AppConfig
from voxchat.voice.console import ConsoleSpeechRecognizer, ConsoleSpeechSynthesizer, ConsoleView, run_console
from voxchat.voice.modes import Mode
from voxchat.voice.timers import TimerService

LOGGER = logging.getLogger("voxchat-assistant")


def build_assistant(config: AppConfig, *, console: bool) -> tuple[VoiceAssistant, ConsoleSpeechRecognizer | None]:
    persister = ConfigPersister(config.config_path)
    if console:
        recognizer = ConsoleSpeechRecognizer()
        timers = TimerService()
        assistant = VoiceAssistant(
            config,
            recognizer,
            ConsoleSpeechSynthesizer(language=config.voice.language),
            view=ConsoleView(timers, config.voice.confirmation_seconds),
            timers=timers,
            persister=persister,
            play_chime=False,
        )
        return assistant, recognizer

    assistant = VoiceAssistant(
        config,
        WyomingSpeechRecognizer(config.stt_endpoint, config.mic, config.phrase),
        WyomingSpeechSynthesizer(config.tts_endpoint, default_voice=config.tts_voice),
        persister=persister,
    )
    return assistant, None


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--console", action="store_true", help="type instead of using the microphone and speaker")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = AppConfig.from_env()
    assistant, console_recognizer = build_assistant(config, console=args.console)

    def _log_mode(mode: Mode) -> None:
        LOGGER.info("Mode: %s", mode.value)

    assistant.modes.set_mode_changed_callback(_log_mode)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    synthesizer = assistant.speech.synthesizer
    if isinstance(synthesizer, WyomingSpeechSynthesizer):
        await synthesizer.refresh_voices()

    await assistant.greet()

    run_task: asyncio.Task | None = None
    if console_recognizer is not None:
        run_task = asyncio.create_task(run_console(assistant, console_recognizer, stop_event))
    else:
        assistant.enter_nonstop()

    await stop_event.wait()
    await assistant.shutdown()
    if run_task is not None:
        run_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await run_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
