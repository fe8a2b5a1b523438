"""
Console front end

Runs the assistant from a terminal without audio hardware:

- ConsoleSpeechRecognizer: typed lines become final transcripts while a session is open
- ConsoleSpeechSynthesizer: replies are printed, playback time is simulated
- ConsoleView: prints transcript, notices, errors and mode changes

Lines starting with ``/`` are UI controls (see ``HELP_TEXT``).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TextIO

from .display import ConversationView
from .recognition import RecognitionListener
from .speech_output import SpeechUtterance, Voice

if TYPE_CHECKING:
    from .assistant import VoiceAssistant
    from .timers import TimerService

LOGGER = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /mic              toggle the microphone (interrupts speech while speaking)
  /nonstop          listen continuously for the wake phrase
  /monologue        let the assistant keep talking on its own
  /idle             return to manual mode
  /mute, /unmute    silence or restore spoken replies
  /wake <phrase>    change the wake phrase
  /autostop <n>     cap playback at n seconds (0 turns it off)
  /quit             exit
Anything else is spoken into the open microphone, or typed to the assistant."""

SECONDS_PER_CHARACTER = 0.06


class ConsoleSpeechRecognizer:
    """Treats typed lines as speech while a session is open."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._listener: RecognitionListener | None = None
        self._logger = logger or LOGGER

    @property
    def listening(self) -> bool:
        return self._listener is not None

    def start(self, listener: RecognitionListener, language: str) -> None:
        self._listener = listener
        self._logger.debug("[console] Listening (%s)", language)
        asyncio.get_running_loop().call_soon(listener.on_start)

    def stop(self) -> None:
        listener = self._listener
        self._listener = None
        if listener is not None:
            asyncio.get_running_loop().call_soon(listener.on_end)

    def feed(self, text: str) -> bool:
        """Deliver ``text`` as a final transcript; False when nothing is listening."""
        if self._listener is None:
            return False
        self._listener.on_result(text, True)
        return True


class ConsoleSpeechSynthesizer:
    def __init__(self, output: TextIO | None = None, language: str = "en-US") -> None:
        self.output = output or sys.stdout
        self._voices = [Voice(name="console", language=language)]
        self._handle: asyncio.TimerHandle | None = None

    def voices(self) -> list[Voice]:
        return list(self._voices)

    def speak(
        self,
        utterance: SpeechUtterance,
        *,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        self.cancel()
        print(f"(speaking) {utterance.text}", file=self.output, flush=True)
        loop = asyncio.get_running_loop()
        loop.call_soon(on_start)
        self._handle = loop.call_later(len(utterance.text) * SECONDS_PER_CHARACTER, self._finish, on_end)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _finish(self, on_end: Callable[[], None]) -> None:
        self._handle = None
        on_end()


class ConsoleView(ConversationView):
    def __init__(self, timers: TimerService, confirmation_seconds: float = 4.0, output: TextIO | None = None) -> None:
        super().__init__(timers, confirmation_seconds)
        self.output = output or sys.stdout

    def render(self, part: str) -> None:
        if part == "message" and self.messages:
            message = self.messages[-1]
            print(f"[{message.role}] {message.text}", file=self.output, flush=True)
            for citation in message.citations:
                print(f"    source: {citation.title or citation.uri} <{citation.uri}>", file=self.output)
        elif part == "notice" and self.notice:
            print(f"* {self.notice}", file=self.output, flush=True)
        elif part == "error" and self.error:
            print(f"! {self.error}", file=self.output, flush=True)


def handle_console_line(assistant: VoiceAssistant, recognizer: ConsoleSpeechRecognizer, line: str) -> bool:
    """Apply one line of console input. Returns False when the user quits."""
    text = line.strip()
    if not text:
        return True
    if not text.startswith("/"):
        if not recognizer.feed(text):
            assistant.submit_in_background(text)
        return True

    command, _, argument = text[1:].partition(" ")
    command = command.lower()
    argument = argument.strip()
    if command == "quit":
        return False
    if command == "mic":
        assistant.toggle_microphone()
    elif command == "nonstop":
        assistant.enter_nonstop()
    elif command == "monologue":
        assistant.enter_monologue()
    elif command == "idle":
        assistant.return_to_manual()
    elif command == "mute":
        assistant.set_muted(True)
    elif command == "unmute":
        assistant.set_muted(False)
    elif command == "wake":
        try:
            assistant.set_wake_phrase(argument)
        except ValueError as exc:
            print(f"! {exc}", file=sys.stderr)
    elif command == "autostop":
        try:
            assistant.set_auto_stop_seconds(int(argument))
        except ValueError:
            print("! /autostop expects a whole number of seconds", file=sys.stderr)
    else:
        print(HELP_TEXT)
    return True


async def _read_stdin_line() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


async def run_console(
    assistant: VoiceAssistant,
    recognizer: ConsoleSpeechRecognizer,
    stop_event: asyncio.Event,
    read_line: Callable[[], Awaitable[str]] | None = None,
) -> None:
    reader = read_line or _read_stdin_line
    print(HELP_TEXT)
    while not stop_event.is_set():
        line = await reader()
        if line == "":
            break
        if not handle_console_line(assistant, recognizer, line):
            break
    stop_event.set()
