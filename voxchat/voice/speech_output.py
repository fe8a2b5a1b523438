"""
Speech output controller

Plays assistant replies through the injected speech synthesizer, one
utterance at a time:

- Muted speaker: the completion callback runs immediately, nothing is played
- Preemption: a new utterance cancels the current one, whose callback is dropped
- Text cleanup: markdown emphasis markers and the fixed closing phrase are removed
- Voice choice: preferred language and gender, then language only, then any voice
- Auto-stop: playback is cut short after the configured number of seconds
- Single exit: end, error, auto-stop and interrupt all run the callback once

Callers chain follow-up work (re-opening the microphone, the next monologue
turn) on that callback, so it must run exactly once per utterance that is
not preempted or cancelled.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from voxchat.utils import collapse_whitespace

if TYPE_CHECKING:
    from voxchat.voice.preferences import VoicePreferences
    from voxchat.voice.timers import TimerService

LOGGER = logging.getLogger(__name__)

_EMPHASIS_RE = re.compile(r"\*+|~~|`+|(?<!\w)_+|_+(?!\w)")
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+", re.MULTILINE)


@dataclass(frozen=True)
class Voice:
    name: str
    language: str
    gender: str | None = None


@dataclass
class SpeechUtterance:
    text: str
    language: str
    voice: Voice | None = None
    on_complete: Callable[[], None] | None = None
    on_preempted: Callable[[], None] | None = None


class SpeechSynthesizer(Protocol):
    """Platform speech synthesis.

    ``speak`` starts playback and reports progress through the callbacks; a
    cancelled utterance may or may not report ``on_end``.
    """

    def voices(self) -> list[Voice]: ...

    def speak(
        self,
        utterance: SpeechUtterance,
        *,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None: ...

    def cancel(self) -> None: ...


def normalize_language(tag: str | None) -> str:
    return (tag or "").strip().replace("_", "-").lower()


def select_voice(voices: Sequence[Voice], language: str, gender: str | None = None) -> Voice | None:
    """Pick a voice: language and gender, then language alone, then anything."""
    if not voices:
        return None
    wanted = normalize_language(language)
    primary = wanted.split("-", 1)[0]

    candidates = [voice for voice in voices if normalize_language(voice.language) == wanted]
    if not candidates and primary:
        candidates = [
            voice for voice in voices if normalize_language(voice.language).split("-", 1)[0] == primary
        ]
    if candidates:
        wanted_gender = (gender or "").strip().lower()
        if wanted_gender and wanted_gender != "any":
            for voice in candidates:
                if (voice.gender or "").lower() == wanted_gender:
                    return voice
        return candidates[0]
    return voices[0]


def strip_markdown_emphasis(text: str) -> str:
    text = _HEADING_RE.sub("", text)
    return _EMPHASIS_RE.sub("", text)


def strip_trailing_phrase(text: str, phrase: str | None) -> str:
    """Remove ``phrase`` from the end of ``text`` (case and whitespace tolerant)."""
    words = (phrase or "").strip().rstrip(".!?").split()
    if not words:
        return text
    body = r"\s+".join(re.escape(word) for word in words)
    return re.sub(rf"\s*{body}[\s.!?]*$", "", text, flags=re.IGNORECASE)


def prepare_speech_text(text: str | None, trailing_phrase: str | None = None) -> str:
    cleaned = strip_markdown_emphasis(text or "")
    cleaned = strip_trailing_phrase(cleaned.rstrip(), trailing_phrase)
    return collapse_whitespace(cleaned)


class SpeechOutputController:
    """Serializes synthesized playback with mute, preemption and auto-stop."""

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        timers: TimerService,
        preferences: VoicePreferences,
        *,
        language: str,
        voice_gender: str | None = None,
        trailing_phrase: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.timers = timers
        self.preferences = preferences
        self.language = language
        self.voice_gender = voice_gender
        self.trailing_phrase = trailing_phrase
        self.logger = logger or LOGGER
        self._current: SpeechUtterance | None = None

    @property
    def is_speaking(self) -> bool:
        return self._current is not None

    def speak(
        self,
        text: str,
        on_complete: Callable[[], None] | None = None,
        *,
        on_preempted: Callable[[], None] | None = None,
    ) -> None:
        """Play ``text``, replacing whatever is playing now.

        ``on_complete`` runs once when playback ends or fails. If this utterance is
        later cancelled or replaced, ``on_complete`` is dropped and
        ``on_preempted`` runs instead.
        """
        if self.preferences.muted:
            self.logger.debug("[speech] Muted; skipping playback")
            if on_complete:
                on_complete()
            return

        self.cancel()
        spoken = prepare_speech_text(text, self.trailing_phrase)
        if not spoken:
            if on_complete:
                on_complete()
            return

        voice = select_voice(self.synthesizer.voices(), self.language, self.voice_gender)
        utterance = SpeechUtterance(
            text=spoken, language=self.language, voice=voice, on_complete=on_complete, on_preempted=on_preempted
        )
        self._current = utterance
        self.logger.debug(
            "[speech] Speaking %d chars (voice=%s)", len(spoken), voice.name if voice else "default"
        )
        try:
            self.synthesizer.speak(
                utterance,
                on_start=lambda: self._handle_start(utterance),
                on_end=lambda: self._finish(utterance),
                on_error=lambda error: self._handle_error(utterance, error),
            )
        except Exception as exc:
            self.logger.warning("[speech] Synthesizer failed to start: %s", exc)
            self._finish(utterance)

    def cancel(self) -> None:
        """Stop playback without running the completion callback."""
        current = self._current
        if current is None:
            return
        self._current = None
        preempted, current.on_preempted = current.on_preempted, None
        current.on_complete = None
        self.timers.auto_stop.cancel()
        self.synthesizer.cancel()
        if preempted:
            preempted()

    def interrupt(self) -> None:
        """Stop playback and run the completion callback as if it had ended."""
        current = self._current
        if current is None:
            return
        self.synthesizer.cancel()
        self._finish(current)

    def handle_muted(self, muted: bool) -> None:
        if muted:
            self.interrupt()

    def _handle_start(self, utterance: SpeechUtterance) -> None:
        if utterance is not self._current:
            return
        seconds = self.preferences.auto_stop_seconds
        if seconds > 0:
            self.timers.auto_stop.arm(seconds, self._auto_stop)

    def _auto_stop(self) -> None:
        self.logger.info("[speech] Auto-stop reached; stopping playback")
        self.interrupt()

    def _handle_error(self, utterance: SpeechUtterance, error: str) -> None:
        if utterance is self._current:
            self.logger.warning("[speech] Synthesis failed: %s", error)
        self._finish(utterance)

    def _finish(self, utterance: SpeechUtterance) -> None:
        if utterance is not self._current:
            return
        self._current = None
        self.timers.auto_stop.cancel()
        callback = utterance.on_complete
        utterance.on_complete = None
        utterance.on_preempted = None
        if callback:
            callback()
