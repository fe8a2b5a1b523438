"""
Voice assistant wiring

Builds the voice controllers around one shared timer service, preference
store and conversation view, and connects them to the chat session:

- Submitted transcripts and typed messages go to the chat model
- Replies are added to the transcript and spoken
- When a reply finishes in non-stop mode the microphone reopens
- Chat failures become error messages in the transcript and on the blackboard

Front ends (the daemon script, the console) only talk to ``VoiceAssistant``.
"""

from __future__ import annotations

import asyncio
import logging

from voxchat.audio import play_wake_chime
from voxchat.config_persist import ConfigPersister

from .chat import GREETING_FAILURE_MESSAGE, ChatReply, ChatRequestError, ChatSession, GeminiChatClient, InlineFile
from .commands import VoiceCommandInterpreter
from .config import AppConfig
from .display import ConversationView
from .modes import Mode, ModeCoordinator
from .preferences import VoicePreferences
from .recognition import RecognitionSessionController, SpeechRecognizer, StopReason
from .speech_output import SpeechOutputController, SpeechSynthesizer
from .timers import TimerService

LOGGER = logging.getLogger("voxchat.assistant")


class VoiceAssistant:
    """Owns every voice component and routes messages between them."""

    def __init__(
        self,
        config: AppConfig,
        recognizer: SpeechRecognizer,
        synthesizer: SpeechSynthesizer,
        *,
        chat_client: GeminiChatClient | None = None,
        view: ConversationView | None = None,
        persister: ConfigPersister | None = None,
        timers: TimerService | None = None,
        play_chime: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or LOGGER
        self.persister = persister
        self.timers = timers or TimerService(logger=self.logger)
        self.view = view or ConversationView(self.timers, config.voice.confirmation_seconds)
        self.preferences = VoicePreferences(config.voice, persister, logger=self.logger)
        self.speech = SpeechOutputController(
            synthesizer,
            self.timers,
            self.preferences,
            language=config.voice.language,
            voice_gender=config.voice.voice_gender,
            trailing_phrase=config.voice.trailing_phrase,
            logger=self.logger,
        )
        self.preferences.set_muted_callback(self.speech.handle_muted)
        self.interpreter = VoiceCommandInterpreter(self.preferences, self.view, self.speech, logger=self.logger)
        self.recognition = RecognitionSessionController(
            recognizer,
            self.timers,
            self.preferences,
            self.view,
            self.interpreter,
            self.speech,
            language=config.voice.language,
            inactivity_seconds=config.voice.inactivity_seconds,
            restart_delay_seconds=config.voice.restart_delay_seconds,
            chime=self._play_chime if play_chime else None,
            logger=self.logger,
        )
        self.recognition.set_submit_callback(self.submit_in_background)
        self.chat_client = chat_client or GeminiChatClient(config.chat, logger=self.logger)
        self.chat = ChatSession(self.chat_client, config.chat, log_turns=config.log_chat, logger=self.logger)
        self.modes = ModeCoordinator(
            self.recognition,
            self.speech,
            self.timers,
            self.view,
            self.chat.continue_monologue,
            logger=self.logger,
        )
        self._tasks: set[asyncio.Task] = set()

    @property
    def mode(self) -> Mode:
        return self.modes.mode

    # ========================================================================
    # Chat
    # ========================================================================

    async def submit_message(self, text: str, inline_file: InlineFile | None = None) -> ChatReply | None:
        """Send a user message and speak the reply."""
        message = (text or "").strip()
        if not message:
            return None
        if self.view.busy:
            self.logger.info("[assistant] Still waiting on the previous reply; ignoring %r", message)
            self._resume_listening()
            return None
        if self.modes.mode is Mode.MONOLOGUE:
            self.logger.info("[assistant] User message interrupts the monologue")
            self.modes.exit_monologue()
        self.view.add_message("user", message)
        self.view.set_input_text("")
        self.view.set_busy(True)
        try:
            reply = await self.chat.send(message, inline_file)
        except ChatRequestError as exc:
            self.view.add_message("error", exc.user_message)
            self.view.write_blackboard(exc.user_message)
            self._resume_listening()
            return None
        finally:
            self.view.set_busy(False)
        self.view.add_message("model", reply.text, reply.citations)
        self.speech.speak(reply.text, on_complete=self._resume_listening)
        return reply

    async def greet(self) -> ChatReply | None:
        self.view.set_busy(True)
        try:
            reply = await self.chat.greet()
        except ChatRequestError:
            self.view.add_message("error", GREETING_FAILURE_MESSAGE)
            self.view.write_blackboard(GREETING_FAILURE_MESSAGE)
            return None
        finally:
            self.view.set_busy(False)
        self.view.add_message("model", reply.text, reply.citations)
        self.speech.speak(reply.text)
        return reply

    def submit_in_background(self, text: str) -> asyncio.Task:
        task = asyncio.create_task(self.submit_message(text))
        self._track(task)
        return task

    def _resume_listening(self) -> None:
        if self.modes.mode is Mode.NONSTOP and not self.recognition.active:
            self.recognition.start()

    # ========================================================================
    # Controls
    # ========================================================================

    def toggle_microphone(self) -> None:
        self.modes.toggle_microphone()

    def enter_nonstop(self) -> None:
        self.modes.enter_nonstop()

    def enter_monologue(self) -> None:
        self._track(self.modes.enter_monologue())

    def return_to_manual(self) -> None:
        self.modes.exit_monologue()
        self.modes.exit_nonstop()

    def set_muted(self, muted: bool) -> None:
        self.preferences.set_muted(muted)

    def set_wake_phrase(self, phrase: str) -> None:
        self.preferences.set_wake_phrase(phrase)

    def set_auto_stop_seconds(self, seconds: int) -> None:
        self.preferences.set_auto_stop_seconds(seconds)

    def reset_conversation(self) -> None:
        self.speech.cancel()
        self.chat.reset()
        self.view.messages.clear()
        self.view.render("message")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def shutdown(self) -> None:
        await self.modes.shutdown()
        if self.recognition.active:
            self.recognition.stop(StopReason.USER)
        self.speech.cancel()
        self.timers.cancel_all()
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.chat_client.close()
        if self.persister is not None:
            self.persister.stop()

    def _play_chime(self) -> None:
        self._track(asyncio.create_task(asyncio.to_thread(play_wake_chime)))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)

        def _cleanup(_task: asyncio.Task) -> None:
            self._tasks.discard(_task)
            if _task.cancelled():
                return
            exc = _task.exception()
            if exc is not None:
                self.logger.error("[assistant] Background task failed", exc_info=exc)

        task.add_done_callback(_cleanup)
