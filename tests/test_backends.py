"""Tests for the Wyoming-backed recognizer and synthesizer."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest
from voxchat.voice.backends import WyomingSpeechRecognizer, WyomingSpeechSynthesizer
from voxchat.voice.config import MicConfig, PhraseConfig, WyomingEndpoint
from voxchat.voice.speech_output import SpeechUtterance, Voice

pytestmark = pytest.mark.anyio

MIC = MicConfig(command=["arecord"], rate=16000, width=2, channels=1, chunk_ms=30)
PHRASE = PhraseConfig(min_seconds=0.5, max_seconds=10.0, silence_ms=1200, rms_floor=120)
STT = WyomingEndpoint(host="localhost", port=10300)
TTS = WyomingEndpoint(host="localhost", port=10200)


@pytest.fixture
def stream():
    """Patch ArecordStream; yield the shared instance."""
    instance = Mock()
    instance.start = AsyncMock()
    instance.stop = AsyncMock()
    with patch("voxchat.voice.backends.ArecordStream", return_value=instance):
        yield instance


@pytest.fixture
def listener() -> Mock:
    return Mock()


async def _run_session(recognizer, listener) -> None:
    recognizer.start(listener, "en-US")
    await recognizer._task


class TestWyomingSpeechRecognizer:
    async def test_transcript_delivered_as_final_result(self, stream, listener):
        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)
        with (
            patch("voxchat.voice.backends.record_phrase", AsyncMock(return_value=(b"\x01" * 960, True))),
            patch("voxchat.voice.backends.transcribe_audio", AsyncMock(return_value=" hello there ")) as stt,
        ):
            await _run_session(recognizer, listener)

        assert [name for name, _, _ in listener.method_calls] == ["on_start", "on_result", "on_end"]
        listener.on_result.assert_called_once_with("hello there", True)
        assert stt.await_args.kwargs["language"] == "en"
        stream.start.assert_awaited_once()
        assert stream.stop.await_count >= 1

    async def test_silence_is_no_speech(self, stream, listener):
        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)
        with (
            patch("voxchat.voice.backends.record_phrase", AsyncMock(return_value=(b"\x00" * 960, False))),
            patch("voxchat.voice.backends.transcribe_audio", AsyncMock()) as stt,
        ):
            await _run_session(recognizer, listener)

        listener.on_error.assert_called_once_with("no-speech")
        listener.on_end.assert_called_once()
        stt.assert_not_awaited()

    async def test_empty_transcript_is_no_speech(self, stream, listener):
        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)
        with (
            patch("voxchat.voice.backends.record_phrase", AsyncMock(return_value=(b"\x01", True))),
            patch("voxchat.voice.backends.transcribe_audio", AsyncMock(return_value=None)),
        ):
            await _run_session(recognizer, listener)

        listener.on_error.assert_called_once_with("no-speech")

    async def test_unreachable_server_is_network_error(self, stream, listener):
        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)
        with (
            patch("voxchat.voice.backends.record_phrase", AsyncMock(return_value=(b"\x01", True))),
            patch("voxchat.voice.backends.transcribe_audio", AsyncMock(side_effect=ConnectionRefusedError())),
        ):
            await _run_session(recognizer, listener)

        listener.on_error.assert_called_once_with("network")
        listener.on_end.assert_called_once()

    async def test_missing_microphone_is_audio_capture(self, stream, listener):
        stream.start.side_effect = FileNotFoundError("arecord")
        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)

        await _run_session(recognizer, listener)

        listener.on_start.assert_not_called()
        listener.on_error.assert_called_once_with("audio-capture")
        listener.on_end.assert_called_once()

    async def test_capture_failure_is_audio_capture(self, stream, listener):
        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)
        with patch("voxchat.voice.backends.record_phrase", AsyncMock(side_effect=RuntimeError("stream ended"))):
            await _run_session(recognizer, listener)

        listener.on_error.assert_called_once_with("audio-capture")

    async def test_stop_cancels_and_still_ends(self, stream, listener):
        gate = asyncio.Event()

        async def record(*_args):
            await gate.wait()
            return b"", False

        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)
        with patch("voxchat.voice.backends.record_phrase", record):
            recognizer.start(listener, "en-US")
            task = recognizer._task
            for _ in range(3):
                await asyncio.sleep(0)
            recognizer.stop()
            with pytest.raises(asyncio.CancelledError):
                await task

        listener.on_error.assert_not_called()
        listener.on_end.assert_called_once()
        stream.stop.assert_awaited()

    async def test_stop_from_result_callback_lets_session_finish(self, stream):
        recognizer = WyomingSpeechRecognizer(STT, MIC, PHRASE)
        listener = Mock()
        listener.on_result.side_effect = lambda *_args: recognizer.stop()

        with (
            patch("voxchat.voice.backends.record_phrase", AsyncMock(return_value=(b"\x01", True))),
            patch("voxchat.voice.backends.transcribe_audio", AsyncMock(return_value="hi")),
        ):
            recognizer.start(listener, "en-US")
            task = recognizer._task
            await task

        assert not task.cancelled()
        listener.on_end.assert_called_once()


class TestWyomingSpeechSynthesizer:
    async def test_refresh_voices(self):
        voices = [Voice("en_US-amy-medium", "en_US", "female")]
        synthesizer = WyomingSpeechSynthesizer(TTS)
        with patch("voxchat.voice.backends.list_tts_voices", AsyncMock(return_value=voices)):
            assert await synthesizer.refresh_voices() == voices
        assert synthesizer.voices() == voices

    async def test_refresh_voices_failure_leaves_empty_list(self, mock_logger):
        synthesizer = WyomingSpeechSynthesizer(TTS, logger=mock_logger)
        with patch("voxchat.voice.backends.list_tts_voices", AsyncMock(side_effect=OSError("down"))):
            assert await synthesizer.refresh_voices() == []
        mock_logger.warning.assert_called_once()

    async def test_speak_streams_and_ends(self):
        synthesizer = WyomingSpeechSynthesizer(TTS, default_voice="en_US-lessac-medium")
        on_start, on_end, on_error = Mock(), Mock(), Mock()

        async def fake_stream(text, **kwargs):
            kwargs["on_audio_start"]()

        with patch("voxchat.voice.backends.play_tts_stream", AsyncMock(side_effect=fake_stream)) as tts:
            synthesizer.speak(SpeechUtterance("Hello", "en-US"), on_start=on_start, on_end=on_end, on_error=on_error)
            await synthesizer._task

        assert tts.await_args.kwargs["voice_name"] == "en_US-lessac-medium"
        on_start.assert_called_once()
        on_end.assert_called_once()
        on_error.assert_not_called()

    async def test_selected_voice_wins(self):
        synthesizer = WyomingSpeechSynthesizer(TTS, default_voice="fallback")
        utterance = SpeechUtterance("Hi", "en-US", voice=Voice("en_US-amy-medium", "en_US"))
        with patch("voxchat.voice.backends.play_tts_stream", AsyncMock()) as tts:
            synthesizer.speak(utterance, on_start=Mock(), on_end=Mock(), on_error=Mock())
            await synthesizer._task
        assert tts.await_args.kwargs["voice_name"] == "en_US-amy-medium"

    async def test_failure_reports_error(self):
        synthesizer = WyomingSpeechSynthesizer(TTS)
        on_end, on_error = Mock(), Mock()
        with patch("voxchat.voice.backends.play_tts_stream", AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            synthesizer.speak(SpeechUtterance("Hi", "en-US"), on_start=Mock(), on_end=on_end, on_error=on_error)
            await synthesizer._task

        on_error.assert_called_once_with("refused")
        on_end.assert_not_called()

    async def test_cancel_drops_callbacks(self):
        gate = asyncio.Event()

        async def slow_stream(text, **kwargs):
            await gate.wait()

        synthesizer = WyomingSpeechSynthesizer(TTS)
        on_end, on_error = Mock(), Mock()
        with patch("voxchat.voice.backends.play_tts_stream", slow_stream):
            synthesizer.speak(SpeechUtterance("Hi", "en-US"), on_start=Mock(), on_end=on_end, on_error=on_error)
            task = synthesizer._task
            await asyncio.sleep(0)
            synthesizer.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        on_end.assert_not_called()
        on_error.assert_not_called()
