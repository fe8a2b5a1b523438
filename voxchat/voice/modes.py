"""
Mode coordinator

Arbitrates between the mutually exclusive listening modes:

- MANUAL: push-to-talk; the microphone button starts and stops sessions
- NONSTOP: hands-free listening gated by the wake phrase
- MONOLOGUE: the assistant keeps talking on its own, one turn after another

Entering NONSTOP leaves MONOLOGUE first and vice versa. The monologue runs as
an asyncio task that checks its cancellation token at every turn boundary;
a chat failure ends the monologue and is reported like any other chat error.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from voxchat.voice.chat import USER_MESSAGES, ChatErrorKind, ChatReply, ChatRequestError
from voxchat.voice.recognition import StopReason

if TYPE_CHECKING:
    from voxchat.voice.display import ConversationView
    from voxchat.voice.recognition import RecognitionSessionController
    from voxchat.voice.speech_output import SpeechOutputController
    from voxchat.voice.timers import TimerService

LOGGER = logging.getLogger(__name__)

MonologueTurn = Callable[[], Awaitable[ChatReply]]


class Mode(enum.Enum):
    MANUAL = "manual"
    NONSTOP = "nonstop"
    MONOLOGUE = "monologue"


class ModeCoordinator:
    """State machine over MANUAL, NONSTOP and MONOLOGUE."""

    def __init__(
        self,
        recognition: RecognitionSessionController,
        speech: SpeechOutputController,
        timers: TimerService,
        view: ConversationView,
        monologue_turn: MonologueTurn,
        logger: logging.Logger | None = None,
    ) -> None:
        self.recognition = recognition
        self.speech = speech
        self.timers = timers
        self.view = view
        self.monologue_turn = monologue_turn
        self.logger = logger or LOGGER
        self._mode = Mode.MANUAL
        self._monologue_task: asyncio.Task | None = None
        self._monologue_cancel: asyncio.Event | None = None
        self._on_mode_changed: Callable[[Mode], None] | None = None
        recognition.set_nonstop_exit_callback(self._handle_forced_nonstop_exit)

    def set_mode_changed_callback(self, callback: Callable[[Mode], None]) -> None:
        self._on_mode_changed = callback

    @property
    def mode(self) -> Mode:
        return self._mode

    # ========================================================================
    # NONSTOP
    # ========================================================================

    def enter_nonstop(self) -> None:
        if self._mode is Mode.NONSTOP:
            return
        if self._mode is Mode.MONOLOGUE:
            self.exit_monologue()
        self.speech.cancel()
        self._set_mode(Mode.NONSTOP)
        self.recognition.set_nonstop(True)
        if not self.recognition.active:
            self.recognition.start()

    def exit_nonstop(self) -> None:
        if self._mode is not Mode.NONSTOP:
            return
        self.recognition.set_nonstop(False)
        self.timers.cancel_listening_timers()
        self.recognition.stop(StopReason.USER)
        self.speech.cancel()
        self._set_mode(Mode.MANUAL)

    def _handle_forced_nonstop_exit(self) -> None:
        if self._mode is not Mode.NONSTOP:
            return
        self.logger.info("[modes] Non-stop listening ended by the recognizer")
        self._set_mode(Mode.MANUAL)

    # ========================================================================
    # MONOLOGUE
    # ========================================================================

    def enter_monologue(self) -> asyncio.Task:
        if self._mode is Mode.MONOLOGUE and self._monologue_task is not None:
            return self._monologue_task
        if self._mode is Mode.NONSTOP:
            self.exit_nonstop()
        if self.recognition.active:
            self.recognition.stop(StopReason.USER)
        self.speech.cancel()
        self._set_mode(Mode.MONOLOGUE)
        cancel = asyncio.Event()
        self._monologue_cancel = cancel
        self._monologue_task = asyncio.create_task(self._run_monologue(cancel))
        return self._monologue_task

    def exit_monologue(self) -> None:
        if self._mode is not Mode.MONOLOGUE:
            return
        self._halt_monologue()
        self.speech.cancel()
        self._set_mode(Mode.MANUAL)

    def _halt_monologue(self) -> None:
        if self._monologue_cancel is not None:
            self._monologue_cancel.set()
        task = self._monologue_task
        self._monologue_task = None
        self._monologue_cancel = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run_monologue(self, cancel: asyncio.Event) -> None:
        self.logger.info("[modes] Monologue started")
        while not cancel.is_set():
            try:
                reply = await self.monologue_turn()
            except ChatRequestError as exc:
                if cancel.is_set():
                    break
                self.logger.warning("[modes] Monologue stopped by chat failure: %s", exc)
                self._abort_monologue(exc.user_message)
                return
            except Exception:
                if cancel.is_set():
                    break
                self.logger.exception("[modes] Monologue turn failed")
                self._abort_monologue(USER_MESSAGES[ChatErrorKind.UNKNOWN])
                return
            if cancel.is_set():
                break
            self.view.add_message("model", reply.text, reply.citations)
            await self._speak_and_wait(reply.text)
        self.logger.info("[modes] Monologue stopped")

    def _abort_monologue(self, message: str) -> None:
        self.exit_monologue()
        self.view.add_message("error", message)
        self.view.write_blackboard(message)

    async def _speak_and_wait(self, text: str) -> None:
        """Speak one turn; returns when it ends or another utterance replaces it."""
        loop = asyncio.get_running_loop()
        finished: asyncio.Future[None] = loop.create_future()

        def _done() -> None:
            if not finished.done():
                finished.set_result(None)

        self.speech.speak(text, on_complete=_done, on_preempted=_done)
        await finished

    async def shutdown(self) -> None:
        """Leave any active mode and wait for the monologue task to unwind."""
        task = self._monologue_task
        self.exit_monologue()
        self.exit_nonstop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ========================================================================
    # Microphone button
    # ========================================================================

    def toggle_microphone(self) -> None:
        if self._mode is Mode.NONSTOP:
            self.exit_nonstop()
            return
        if self._mode is Mode.MONOLOGUE:
            self.exit_monologue()
        self.recognition.toggle()

    def _set_mode(self, mode: Mode) -> None:
        if mode is self._mode:
            return
        self.logger.info("[modes] %s -> %s", self._mode.value, mode.value)
        self._mode = mode
        if self._on_mode_changed:
            self._on_mode_changed(mode)
