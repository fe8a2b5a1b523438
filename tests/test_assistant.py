"""Tests for VoiceAssistant wiring: chat round trips, resumed listening, shutdown."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import Mock, patch

import httpx
import pytest
from voxchat.voice.assistant import VoiceAssistant
from voxchat.voice.chat import GREETING_FAILURE_MESSAGE, USER_MESSAGES, ChatErrorKind, GeminiChatClient
from voxchat.voice.config import AppConfig
from voxchat.voice.modes import Mode

pytestmark = pytest.mark.anyio


async def _settle(rounds: int = 50) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _drain(assistant: VoiceAssistant) -> None:
    """Wait for submitted messages to finish their round trip."""
    await asyncio.gather(*list(assistant._tasks))


class GeminiStub:
    """Scripted Gemini endpoint for httpx.MockTransport."""

    def __init__(self) -> None:
        self.replies: list[httpx.Response] = []
        self.prompts: list[str] = []

    def queue(self, text: str) -> None:
        self.replies.append(
            httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})
        )

    def fail(self, status: int) -> None:
        self.replies.append(httpx.Response(status, text="error"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.prompts.append(body["contents"][-1]["parts"][0]["text"])
        if not self.replies:
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})
        return self.replies.pop(0)


@pytest.fixture
def gemini() -> GeminiStub:
    return GeminiStub()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig.from_env(
        {
            "GEMINI_API_KEY": "test-key",
            "GEMINI_BASE_URL": "https://gemini.test/v1beta",
            "VOXCHAT_CONFIG_FILE": str(tmp_path / "voxchat.conf"),
            "VOXCHAT_LOG_CHAT": "false",
        }
    )


@pytest.fixture
def persister() -> Mock:
    return Mock()


@pytest.fixture
def assistant(app_config, recognizer, synthesizer, timers, gemini, persister) -> VoiceAssistant:
    client = GeminiChatClient(app_config.chat, client=httpx.AsyncClient(transport=httpx.MockTransport(gemini)))
    return VoiceAssistant(
        app_config,
        recognizer,
        synthesizer,
        chat_client=client,
        persister=persister,
        timers=timers,
        play_chime=False,
    )


class TestSubmitMessage:
    async def test_reply_is_shown_and_spoken(self, assistant, gemini, synthesizer):
        gemini.queue("**Paris** is the capital. Is there anything else I can help you with?")

        reply = await assistant.submit_message("  capital of France? ")

        assert reply is not None
        roles = [(message.role, message.text) for message in assistant.view.messages]
        assert roles == [
            ("user", "capital of France?"),
            ("model", "**Paris** is the capital. Is there anything else I can help you with?"),
        ]
        assert synthesizer.texts == ["Paris is the capital."]
        assert not assistant.view.busy
        assert assistant.view.input_text == ""

    async def test_chat_failure_is_rendered(self, assistant, gemini, synthesizer):
        gemini.fail(429)

        reply = await assistant.submit_message("hello")

        assert reply is None
        expected = USER_MESSAGES[ChatErrorKind.RATE_LIMITED]
        assert assistant.view.messages[-1].role == "error"
        assert assistant.view.messages[-1].text == expected
        assert assistant.view.blackboard == expected
        assert assistant.chat.history == []
        assert synthesizer.spoken == []
        assert not assistant.view.busy

    async def test_ignored_while_busy(self, assistant, gemini):
        assistant.view.set_busy(True)
        assert await assistant.submit_message("hello") is None
        assert gemini.prompts == []

    async def test_ignored_while_busy_keeps_listening(self, assistant, recognizer, gemini):
        assistant.enter_nonstop()
        assistant.view.set_busy(True)

        recognizer.result("hey assistant hello")
        await _drain(assistant)

        assert gemini.prompts == []
        assert recognizer.start_calls == 2
        assert assistant.recognition.active

    async def test_typed_message_interrupts_monologue(self, assistant, gemini, synthesizer, app_config):
        assistant.enter_monologue()
        await _settle()
        assert assistant.mode is Mode.MONOLOGUE

        gemini.queue("Here is the news.")
        reply = await assistant.submit_message("what's new")
        await _settle()

        assert reply is not None
        assert assistant.mode is Mode.MANUAL
        assert gemini.prompts == [app_config.chat.monologue_prompt, "what's new"]
        assert synthesizer.texts[-1] == "Here is the news."
        assert assistant.speech.is_speaking

    async def test_blank_message_ignored(self, assistant, gemini):
        assert await assistant.submit_message("   ") is None
        assert assistant.view.messages == []


class TestGreeting:
    async def test_greeting_spoken(self, assistant, gemini, synthesizer, app_config):
        gemini.queue("Hi, I'm your assistant.")

        await assistant.greet()

        assert gemini.prompts == [app_config.chat.greeting_prompt]
        assert synthesizer.texts == ["Hi, I'm your assistant."]

    async def test_greeting_failure_message(self, assistant, gemini):
        gemini.fail(503)

        assert await assistant.greet() is None
        assert assistant.view.messages[-1].text == GREETING_FAILURE_MESSAGE
        assert assistant.view.blackboard == GREETING_FAILURE_MESSAGE


class TestNonStopRoundTrip:
    async def test_wake_phrase_to_reply_and_back_to_listening(self, assistant, recognizer, synthesizer, gemini):
        gemini.queue("It is noon.")
        assistant.enter_nonstop()

        recognizer.result("hey assistant what time is it")
        assert not assistant.recognition.active
        await _drain(assistant)

        assert gemini.prompts == ["what time is it"]
        assert synthesizer.texts == ["It is noon."]
        assert recognizer.start_calls == 1

        recognizer.end()
        synthesizer.last.on_start()
        synthesizer.last.on_end()

        assert recognizer.start_calls == 2
        assert assistant.recognition.active
        assert assistant.mode is Mode.NONSTOP

    async def test_muted_reply_resumes_immediately(self, assistant, recognizer, synthesizer):
        assistant.set_muted(True)
        assistant.enter_nonstop()

        recognizer.result("hey assistant tell me a joke")
        await _drain(assistant)

        assert synthesizer.spoken == []
        assert recognizer.start_calls == 2

    async def test_failed_request_resumes_listening(self, assistant, recognizer, gemini):
        gemini.fail(500)
        assistant.enter_nonstop()

        recognizer.result("hey assistant hello")
        await _drain(assistant)

        assert recognizer.start_calls == 2
        assert assistant.view.messages[-1].role == "error"

    async def test_reply_after_leaving_nonstop_does_not_listen(self, assistant, recognizer, synthesizer, gemini):
        assistant.enter_nonstop()
        recognizer.result("hey assistant hello")
        await _drain(assistant)

        assistant.return_to_manual()
        assert recognizer.start_calls == 1
        assert not assistant.speech.is_speaking


class TestControls:
    async def test_preferences_are_persisted(self, assistant, persister):
        assistant.set_wake_phrase("computer")
        assistant.set_auto_stop_seconds(10)
        assistant.set_muted(True)

        persister.update.assert_any_call("VOXCHAT_WAKE_PHRASE", "computer")
        persister.update.assert_any_call("VOXCHAT_AUTO_STOP_SECONDS", "10")
        persister.update.assert_any_call("VOXCHAT_MUTED", "true")

    async def test_monologue_uses_continuation_prompt(self, assistant, gemini, app_config):
        assistant.enter_monologue()
        await _settle()

        assert gemini.prompts == [app_config.chat.monologue_prompt]
        assert assistant.mode is Mode.MONOLOGUE
        assistant.return_to_manual()
        await _settle()
        assert assistant.mode is Mode.MANUAL

    async def test_reset_conversation(self, assistant, gemini):
        await assistant.submit_message("hello")
        assistant.reset_conversation()
        assert assistant.chat.history == []
        assert assistant.view.messages == []

    async def test_chime_plays_off_loop(self, app_config, recognizer, synthesizer, timers, gemini):
        client = GeminiChatClient(app_config.chat, client=httpx.AsyncClient(transport=httpx.MockTransport(gemini)))
        assistant = VoiceAssistant(app_config, recognizer, synthesizer, chat_client=client, timers=timers)
        with patch("voxchat.voice.assistant.play_wake_chime") as chime:
            assistant.enter_nonstop()
            recognizer.result("hey assistant")
            await asyncio.gather(*list(assistant._tasks))
        chime.assert_called_once()
        await assistant.shutdown()


async def test_shutdown_releases_everything(assistant, persister, recognizer, timers):
    assistant.enter_nonstop()

    await assistant.shutdown()

    assert assistant.mode is Mode.MANUAL
    assert not assistant.recognition.active
    assert not timers.inactivity.active
    assert assistant.chat_client._client.is_closed
    persister.stop.assert_called_once()
