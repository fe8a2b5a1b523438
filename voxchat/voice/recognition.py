"""
Recognition session controller

Owns the lifecycle of the speech recognition session:

- start/stop with a single authoritative stop reason per session
- automatic restart (after a short delay) when a non-stop session ends on its own
- interim transcripts shown live in the input field
- final transcripts submitted (manual), or run through the wake phrase and
  voice commands (non-stop)
- platform error codes mapped to fixed user-facing messages
- the non-stop inactivity timeout

Each session gets its own listener object, so late events from a session that
has already been replaced are dropped instead of being applied to the new one.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from voxchat.voice.commands import CommandAction
from voxchat.voice.wake_word import match_wake_phrase

if TYPE_CHECKING:
    from voxchat.voice.commands import VoiceCommandInterpreter
    from voxchat.voice.display import ConversationView
    from voxchat.voice.preferences import VoicePreferences
    from voxchat.voice.speech_output import SpeechOutputController
    from voxchat.voice.timers import TimerService

LOGGER = logging.getLogger(__name__)

INACTIVITY_NOTICE = "Non-stop listening paused due to inactivity."


class RecognitionAlreadyActive(RuntimeError):
    """Raised when a session is started while another one is running."""


class RecognitionErrorCode(enum.Enum):
    NETWORK = "network"
    PERMISSION_DENIED = "permission-denied"
    NO_DEVICE = "no-device"
    UNSUPPORTED_LANGUAGE = "unsupported-language"
    NO_SPEECH = "no-speech"
    UNKNOWN = "unknown"


_PLATFORM_ERROR_CODES: dict[str, RecognitionErrorCode] = {
    "network": RecognitionErrorCode.NETWORK,
    "not-allowed": RecognitionErrorCode.PERMISSION_DENIED,
    "service-not-allowed": RecognitionErrorCode.PERMISSION_DENIED,
    "audio-capture": RecognitionErrorCode.NO_DEVICE,
    "language-not-supported": RecognitionErrorCode.UNSUPPORTED_LANGUAGE,
    "no-speech": RecognitionErrorCode.NO_SPEECH,
}

ERROR_MESSAGES: dict[RecognitionErrorCode, str] = {
    RecognitionErrorCode.NETWORK: "Speech recognition failed because of a network problem.",
    RecognitionErrorCode.PERMISSION_DENIED: "Microphone access was denied. Please allow microphone access.",
    RecognitionErrorCode.NO_DEVICE: "No microphone was found. Please check your audio input device.",
    RecognitionErrorCode.UNSUPPORTED_LANGUAGE: "The selected language is not supported for speech recognition.",
    RecognitionErrorCode.NO_SPEECH: "No speech was detected. Please try again.",
    RecognitionErrorCode.UNKNOWN: "Speech recognition stopped because of an unexpected error.",
}


def classify_recognition_error(code: str | None) -> RecognitionErrorCode:
    return _PLATFORM_ERROR_CODES.get((code or "").strip().lower(), RecognitionErrorCode.UNKNOWN)


class StopReason(enum.Enum):
    USER = "user"
    ERROR = "error"
    TIMEOUT = "timeout"
    SUBMITTED = "submitted"


@dataclass
class ListeningSession:
    active: bool = True
    awaiting_command: bool = False
    stop_reason: StopReason | None = None


class RecognitionListener(Protocol):
    def on_start(self) -> None: ...

    def on_result(self, transcript: str, is_final: bool) -> None: ...

    def on_error(self, code: str) -> None: ...

    def on_end(self) -> None: ...


class SpeechRecognizer(Protocol):
    """Platform speech recognition; events are delivered to the listener."""

    def start(self, listener: RecognitionListener, language: str) -> None: ...

    def stop(self) -> None: ...


class _SessionListener:
    """Routes platform events for one session back to the controller."""

    def __init__(self, controller: RecognitionSessionController, session: ListeningSession) -> None:
        self._controller = controller
        self._session = session

    def on_start(self) -> None:
        self._controller._handle_start(self._session)

    def on_result(self, transcript: str, is_final: bool) -> None:
        self._controller._handle_result(self._session, transcript, is_final)

    def on_error(self, code: str) -> None:
        self._controller._handle_error(self._session, code)

    def on_end(self) -> None:
        self._controller._handle_end(self._session)


class RecognitionSessionController:
    """Starts, stops and restarts recognition sessions according to mode."""

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        timers: TimerService,
        preferences: VoicePreferences,
        view: ConversationView,
        interpreter: VoiceCommandInterpreter,
        speech: SpeechOutputController,
        *,
        language: str,
        inactivity_seconds: float = 20.0,
        restart_delay_seconds: float = 0.3,
        chime: Callable[[], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.recognizer = recognizer
        self.timers = timers
        self.preferences = preferences
        self.view = view
        self.interpreter = interpreter
        self.speech = speech
        self.language = language
        self.inactivity_seconds = inactivity_seconds
        self.restart_delay_seconds = restart_delay_seconds
        self.logger = logger or LOGGER
        self._chime = chime
        self._session: ListeningSession | None = None
        self._nonstop = False
        # A bare wake phrase heard just before a spontaneous session end carries
        # over into the restarted session.
        self._carry_awaiting = False
        self._on_submit: Callable[[str], None] | None = None
        self._on_nonstop_exit: Callable[[], None] | None = None

    # ========================================================================
    # Callbacks
    # ========================================================================

    def set_submit_callback(self, callback: Callable[[str], None]) -> None:
        """Set callback receiving text that should be sent to the chat model."""
        self._on_submit = callback

    def set_nonstop_exit_callback(self, callback: Callable[[], None]) -> None:
        """Set callback invoked when an error or inactivity forces non-stop mode off."""
        self._on_nonstop_exit = callback

    # ========================================================================
    # State
    # ========================================================================

    @property
    def session(self) -> ListeningSession | None:
        return self._session

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def awaiting_command(self) -> bool:
        return self.active and self._session is not None and self._session.awaiting_command

    @property
    def nonstop(self) -> bool:
        return self._nonstop

    def set_nonstop(self, enabled: bool) -> None:
        self._nonstop = enabled
        if not enabled:
            self._carry_awaiting = False
            self.timers.cancel_listening_timers()
        elif self.active and not self.timers.inactivity.active:
            self._arm_inactivity()

    # ========================================================================
    # Session control
    # ========================================================================

    def start(self) -> None:
        if self.active:
            raise RecognitionAlreadyActive("Speech recognition is already running")
        self.timers.restart.cancel()
        session = ListeningSession(awaiting_command=self._carry_awaiting)
        self._carry_awaiting = False
        self._session = session
        if self._nonstop and not self.timers.inactivity.active:
            self._arm_inactivity()
        self.logger.debug("[recognition] Starting session (nonstop=%s)", self._nonstop)
        self.recognizer.start(_SessionListener(self, session), self.language)

    def stop(self, reason: StopReason) -> None:
        self.timers.cancel_listening_timers()
        self._carry_awaiting = False
        session = self._session
        if session is None or not session.active:
            return
        session.active = False
        session.awaiting_command = False
        session.stop_reason = reason
        self.logger.debug("[recognition] Stopping session (%s)", reason.value)
        self.recognizer.stop()

    def toggle(self) -> None:
        """Microphone button: interrupt playback, else stop or start listening."""
        if self.speech.is_speaking:
            self.speech.interrupt()
            return
        if self.active:
            self.stop(StopReason.USER)
            return
        self.start()

    # ========================================================================
    # Platform events
    # ========================================================================

    def _handle_start(self, session: ListeningSession) -> None:
        if session is not self._session:
            return
        self.logger.debug("[recognition] Session started")
        self.view.clear_error()

    def _handle_result(self, session: ListeningSession, transcript: str, is_final: bool) -> None:
        if session is not self._session or session.stop_reason is not None:
            return
        if self._nonstop:
            self._arm_inactivity()
        if not is_final:
            self.view.set_input_text(transcript)
            return

        text = (transcript or "").strip()
        if not self._nonstop:
            if text:
                self._submit(text)
            return

        if session.awaiting_command:
            if text:
                session.awaiting_command = False
                self._submit(text)
            return

        match = match_wake_phrase(text, self.preferences.wake_phrase)
        if match is None:
            self.logger.debug("[recognition] No wake phrase in %r", text)
            self.view.set_input_text("")
            return

        self.logger.info("[recognition] Wake phrase detected")
        self._play_chime()
        result = self.interpreter.interpret(match.command)
        if result.action is CommandAction.SUBMIT:
            self._submit(result.text)
        elif result.action is CommandAction.AWAIT_COMMAND:
            session.awaiting_command = True
            self.view.set_input_text("")
        else:
            self.view.set_input_text("")

    def _handle_error(self, session: ListeningSession, raw_code: str) -> None:
        if session is not self._session:
            return
        code = classify_recognition_error(raw_code)
        if session.stop_reason is not None:
            self.logger.debug("[recognition] Ignoring %s after stop", raw_code)
            return
        if code is RecognitionErrorCode.NO_SPEECH and self._nonstop:
            self.logger.debug("[recognition] No speech while listening non-stop")
            return

        self.logger.warning("[recognition] Recognition error: %s (%s)", code.value, raw_code)
        self.stop(StopReason.ERROR)
        if self._nonstop:
            self._exit_nonstop()
        self.view.show_error(ERROR_MESSAGES[code])

    def _handle_end(self, session: ListeningSession) -> None:
        if session is not self._session:
            return
        self._session = None
        session.active = False
        if session.stop_reason is not None:
            self.logger.debug("[recognition] Session ended (%s)", session.stop_reason.value)
            return
        if self._nonstop:
            self._carry_awaiting = session.awaiting_command
            self.logger.debug("[recognition] Session ended; restarting in %.2fs", self.restart_delay_seconds)
            self.timers.restart.arm(self.restart_delay_seconds, self._restart)
        else:
            self.logger.debug("[recognition] Session ended")

    # ========================================================================
    # Helpers
    # ========================================================================

    def _restart(self) -> None:
        if not self._nonstop or self.active:
            return
        self.start()

    def _submit(self, text: str) -> None:
        self.stop(StopReason.SUBMITTED)
        if self._on_submit:
            self._on_submit(text)
        else:
            self.logger.warning("[recognition] No submit handler; dropping %r", text)

    def _arm_inactivity(self) -> None:
        self.timers.inactivity.arm(self.inactivity_seconds, self._handle_inactivity)

    def _handle_inactivity(self) -> None:
        if not self._nonstop:
            return
        self.logger.info("[recognition] No speech for %.0fs; leaving non-stop mode", self.inactivity_seconds)
        self.stop(StopReason.TIMEOUT)
        self._exit_nonstop()
        self.view.show_notice(INACTIVITY_NOTICE)

    def _exit_nonstop(self) -> None:
        self.set_nonstop(False)
        if self._on_nonstop_exit:
            self._on_nonstop_exit()

    def _play_chime(self) -> None:
        if self._chime and self.preferences.wake_sound:
            self._chime()
