"""
Wyoming speech backends

Adapts the callback-style recognizer and synthesizer interfaces used by the
voice controllers to Wyoming services:

- WyomingSpeechRecognizer: records one phrase from the microphone (silence
  detection on RMS), sends it to a Wyoming STT server (faster-whisper) and
  reports the transcript as a final result
- WyomingSpeechSynthesizer: streams Wyoming TTS (Piper) audio to the local
  player and lists installed voices

Each recognition session is one asyncio task. Whatever happens inside it, the
listener's ``on_end`` runs exactly once when the task finishes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .audio import AplaySink, ArecordStream, record_phrase
from .config import MicConfig, PhraseConfig, WyomingEndpoint
from .recognition import RecognitionListener
from .speech_output import SpeechUtterance, Voice
from .wyoming import list_tts_voices, play_tts_stream, transcribe_audio

LOGGER = logging.getLogger(__name__)


class WyomingSpeechRecognizer:
    def __init__(
        self,
        endpoint: WyomingEndpoint,
        mic: MicConfig,
        phrase: PhraseConfig,
        *,
        timeout: float | None = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.mic = mic
        self.phrase = phrase
        self.timeout = timeout
        self._logger = logger or LOGGER
        self._task: asyncio.Task | None = None

    def start(self, listener: RecognitionListener, language: str) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._run(listener, language))

    def stop(self) -> None:
        task = self._task
        self._task = None
        # A stop requested from inside the session's own callbacks ends it naturally.
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    async def _run(self, listener: RecognitionListener, language: str) -> None:
        stream = ArecordStream(self.mic.command, self.mic.bytes_per_chunk, logger=self._logger)
        try:
            try:
                await stream.start()
            except OSError as exc:
                self._logger.warning("[recognizer] Unable to open microphone: %s", exc)
                listener.on_error("audio-capture")
                return
            listener.on_start()
            try:
                audio, heard_speech = await record_phrase(stream, self.mic, self.phrase)
            except RuntimeError as exc:
                self._logger.warning("[recognizer] Microphone capture failed: %s", exc)
                listener.on_error("audio-capture")
                return
            await stream.stop()
            if not heard_speech:
                listener.on_error("no-speech")
                return
            try:
                transcript = await transcribe_audio(
                    audio,
                    endpoint=self.endpoint,
                    mic=self.mic,
                    language=language.split("-", 1)[0] or None,
                    timeout=self.timeout,
                    logger=self._logger,
                )
            except (OSError, asyncio.TimeoutError) as exc:
                self._logger.warning("[recognizer] Wyoming STT request failed: %s", exc)
                listener.on_error("network")
                return
            text = (transcript or "").strip()
            if not text:
                listener.on_error("no-speech")
                return
            self._logger.debug("[recognizer] Transcript: %s", text)
            listener.on_result(text, True)
        finally:
            try:
                await stream.stop()
            finally:
                listener.on_end()


class WyomingSpeechSynthesizer:
    def __init__(
        self,
        endpoint: WyomingEndpoint,
        *,
        default_voice: str | None = None,
        player: str | None = None,
        timeout: float | None = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.default_voice = default_voice
        self.player = player
        self.timeout = timeout
        self._logger = logger or LOGGER
        self._voices: list[Voice] = []
        self._task: asyncio.Task | None = None

    async def refresh_voices(self) -> list[Voice]:
        try:
            self._voices = await list_tts_voices(endpoint=self.endpoint, timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            self._logger.warning("[synthesizer] Unable to list Wyoming voices: %s", exc)
            self._voices = []
        self._logger.debug("[synthesizer] %d voices available", len(self._voices))
        return list(self._voices)

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
        voice_name = utterance.voice.name if utterance.voice else self.default_voice
        self._task = asyncio.create_task(self._play(utterance.text, voice_name, on_start, on_end, on_error))

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _play(
        self,
        text: str,
        voice_name: str | None,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        sink = AplaySink(self.player, logger=self._logger)
        try:
            await play_tts_stream(
                text,
                endpoint=self.endpoint,
                sink=sink,
                voice_name=voice_name,
                on_audio_start=on_start,
                timeout=self.timeout,
            )
        except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
            on_error(str(exc) or exc.__class__.__name__)
            return
        on_end()
