"""Shared test fixtures for the voxchat test suite.

This module provides reusable fixtures for common test scenarios including:
- A manual clock standing in for the event loop's call_later
- Fake speech recognizer and synthesizer that record calls and emit events
- Voice configuration, preferences, view and controller wiring
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from unittest.mock import Mock

import pytest
from voxchat.voice.commands import VoiceCommandInterpreter
from voxchat.voice.config import (
    DEFAULT_LANGUAGE,
    DEFAULT_TRAILING_PHRASE,
    DEFAULT_WAKE_PHRASE,
    ChatConfig,
    VoiceConfig,
)
from voxchat.voice.display import ConversationView
from voxchat.voice.preferences import VoicePreferences
from voxchat.voice.recognition import RecognitionSessionController
from voxchat.voice.speech_output import SpeechOutputController, SpeechUtterance, Voice
from voxchat.voice.timers import TimerService

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def mock_logger():
    return Mock(spec=logging.Logger)


# ============================================================================
# Manual clock
# ============================================================================


class ManualHandle:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic ``Scheduler``: callbacks run only when the clock advances."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + max(0.0, delay), callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[ManualHandle]:
        return [handle for handle in self.handles if not handle.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [handle for handle in self.pending if handle.when <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda item: item.when)
            self.handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target


# ============================================================================
# Speech fakes
# ============================================================================


class FakeRecognizer:
    """Records start/stop calls; tests push platform events through it."""

    def __init__(self) -> None:
        self.listeners: list = []
        self.languages: list[str] = []
        self.stop_calls = 0

    @property
    def listener(self):
        return self.listeners[-1]

    @property
    def start_calls(self) -> int:
        return len(self.listeners)

    def start(self, listener, language: str) -> None:
        self.listeners.append(listener)
        self.languages.append(language)

    def stop(self) -> None:
        self.stop_calls += 1

    def result(self, transcript: str, is_final: bool = True) -> None:
        self.listener.on_result(transcript, is_final)

    def error(self, code: str) -> None:
        self.listener.on_error(code)

    def end(self) -> None:
        self.listener.on_end()


@dataclass
class SpokenItem:
    utterance: SpeechUtterance
    on_start: Callable[[], None]
    on_end: Callable[[], None]
    on_error: Callable[[str], None]


@dataclass
class FakeSynthesizer:
    available: list[Voice] = field(default_factory=lambda: [Voice("en-female", "en-US", "female")])
    spoken: list[SpokenItem] = field(default_factory=list)
    cancel_calls: int = 0
    fail_on_speak: bool = False

    def voices(self) -> list[Voice]:
        return list(self.available)

    def speak(self, utterance, *, on_start, on_end, on_error) -> None:
        if self.fail_on_speak:
            raise RuntimeError("synthesizer unavailable")
        self.spoken.append(SpokenItem(utterance, on_start, on_end, on_error))

    def cancel(self) -> None:
        self.cancel_calls += 1

    @property
    def last(self) -> SpokenItem:
        return self.spoken[-1]

    @property
    def texts(self) -> list[str]:
        return [item.utterance.text for item in self.spoken]


# ============================================================================
# Configuration Fixtures
# ============================================================================


def make_voice_config(**overrides) -> VoiceConfig:
    config = VoiceConfig(
        wake_phrase=DEFAULT_WAKE_PHRASE,
        auto_stop_seconds=0,
        muted=False,
        wake_sound=True,
        language=DEFAULT_LANGUAGE,
        voice_gender="female",
        trailing_phrase=DEFAULT_TRAILING_PHRASE,
        inactivity_seconds=20.0,
        restart_delay_seconds=0.3,
        confirmation_seconds=4.0,
    )
    return replace(config, **overrides)


def make_chat_config(**overrides) -> ChatConfig:
    config = ChatConfig(
        system_prompt="Be brief.",
        gemini_model="gemini-2.5-flash",
        gemini_api_key="test-key",
        gemini_base_url="https://gemini.test/v1beta",
        gemini_timeout=5,
        search_grounding=False,
        greeting_prompt="Hello! Introduce yourself and ask how you can help.",
        monologue_prompt="Keep going.",
    )
    return replace(config, **overrides)


@pytest.fixture
def clock() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def timers(clock) -> TimerService:
    return TimerService(clock)


@pytest.fixture
def voice_config() -> VoiceConfig:
    return make_voice_config()


@pytest.fixture
def preferences(voice_config) -> VoicePreferences:
    return VoicePreferences(voice_config)


@pytest.fixture
def view(timers) -> ConversationView:
    return ConversationView(timers, confirmation_seconds=4.0)


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def speech(synthesizer, timers, preferences) -> SpeechOutputController:
    controller = SpeechOutputController(
        synthesizer,
        timers,
        preferences,
        language="en-US",
        voice_gender="female",
        trailing_phrase=DEFAULT_TRAILING_PHRASE,
    )
    preferences.set_muted_callback(controller.handle_muted)
    return controller


@pytest.fixture
def interpreter(preferences, view, speech) -> VoiceCommandInterpreter:
    return VoiceCommandInterpreter(preferences, view, speech)


@pytest.fixture
def chime() -> Mock:
    return Mock()


@pytest.fixture
def submitted() -> list[str]:
    return []


@pytest.fixture
def recognition(recognizer, timers, preferences, view, interpreter, speech, chime, submitted):
    controller = RecognitionSessionController(
        recognizer,
        timers,
        preferences,
        view,
        interpreter,
        speech,
        language="en-US",
        inactivity_seconds=20.0,
        restart_delay_seconds=0.3,
        chime=chime,
    )
    controller.set_submit_callback(submitted.append)
    return controller


@pytest.fixture
def chat_config() -> ChatConfig:
    return make_chat_config()
