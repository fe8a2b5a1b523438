"""
Voice commands spoken after the wake phrase

Recognized patterns, tried in priority order (first match wins):

1. "change wake word to <phrase>" - replaces the wake phrase
2. "set auto-stop to <n> seconds" / "turn auto-stop off" - caps speech playback
3. any other non-empty text - submitted to the chat model
4. nothing at all (wake phrase spoken alone) - wait for the next utterance

Settings changes are confirmed both on screen and out loud. The interpreter
never touches the recognition session; it only reports whether the caller
should submit a message or keep waiting for the command.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from voxchat.utils import collapse_whitespace

if TYPE_CHECKING:
    from voxchat.voice.display import ConversationView
    from voxchat.voice.preferences import VoicePreferences
    from voxchat.voice.speech_output import SpeechOutputController

LOGGER = logging.getLogger(__name__)

_AUTO_STOP = r"auto\s*-?\s*stop"
_CHANGE_WAKE_RE = re.compile(
    r"\bchange\s+(?:the\s+|my\s+)?wake\s*-?\s*(?:word|phrase)\s+to\s+(?P<phrase>.+)$",
    re.IGNORECASE | re.DOTALL,
)
_SET_AUTO_STOP_RE = re.compile(
    rf"\b(?:set|turn)\s+(?:the\s+)?{_AUTO_STOP}\s+(?:to\s+)?(?P<value>\d+|off)\b",
    re.IGNORECASE,
)
_TURN_OFF_AUTO_STOP_RE = re.compile(rf"\bturn\s+off\s+(?:the\s+)?{_AUTO_STOP}\b", re.IGNORECASE)
_PHRASE_TRIM = " \t\r\n.,!?;:\"'"


@dataclass(frozen=True)
class VoiceCommand:
    kind: Literal["change_wake_phrase", "set_auto_stop", "submit", "await"]
    text: str = ""
    seconds: int = 0


class CommandAction(enum.Enum):
    HANDLED = "handled"
    SUBMIT = "submit"
    AWAIT_COMMAND = "await_command"


@dataclass(frozen=True)
class CommandResult:
    action: CommandAction
    text: str = ""


def parse_voice_command(text: str | None) -> VoiceCommand:
    """Classify the text that followed the wake phrase."""
    cleaned = collapse_whitespace(text)
    if not cleaned:
        return VoiceCommand(kind="await")

    match = _CHANGE_WAKE_RE.search(cleaned)
    if match:
        phrase = collapse_whitespace(match.group("phrase").strip(_PHRASE_TRIM))
        if phrase:
            return VoiceCommand(kind="change_wake_phrase", text=phrase)

    match = _SET_AUTO_STOP_RE.search(cleaned)
    if match:
        value = match.group("value").lower()
        seconds = 0 if value == "off" else int(value)
        return VoiceCommand(kind="set_auto_stop", seconds=seconds)
    if _TURN_OFF_AUTO_STOP_RE.search(cleaned):
        return VoiceCommand(kind="set_auto_stop", seconds=0)

    return VoiceCommand(kind="submit", text=cleaned)


class VoiceCommandInterpreter:
    """Applies parsed voice commands and announces settings changes."""

    def __init__(
        self,
        preferences: VoicePreferences,
        view: ConversationView,
        speech: SpeechOutputController,
        logger: logging.Logger | None = None,
    ) -> None:
        self.preferences = preferences
        self.view = view
        self.speech = speech
        self.logger = logger or LOGGER

    def interpret(self, text: str | None) -> CommandResult:
        command = parse_voice_command(text)
        if command.kind == "change_wake_phrase":
            self.preferences.set_wake_phrase(command.text)
            self.logger.info("[commands] Wake phrase changed to %r", command.text)
            self._confirm(f'Wake word changed to "{command.text}".')
            return CommandResult(CommandAction.HANDLED)
        if command.kind == "set_auto_stop":
            self.preferences.set_auto_stop_seconds(command.seconds)
            self.logger.info("[commands] Auto-stop set to %ss", command.seconds)
            if command.seconds:
                self._confirm(f"Auto-stop set to {command.seconds} seconds.")
            else:
                self._confirm("Auto-stop turned off.")
            return CommandResult(CommandAction.HANDLED)
        if command.kind == "submit":
            return CommandResult(CommandAction.SUBMIT, command.text)
        return CommandResult(CommandAction.AWAIT_COMMAND)

    def _confirm(self, message: str) -> None:
        self.view.show_confirmation(message)
        self.speech.speak(message)
