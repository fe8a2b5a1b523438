"""Configuration helpers for the voxchat voice assistant."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from voxchat.config_persist import read_config_file, resolve_config_path
from voxchat.utils import collapse_whitespace, parse_bool, parse_float, parse_int

DEFAULT_WAKE_PHRASE = "hey assistant"
DEFAULT_LANGUAGE = "en-US"
DEFAULT_TRAILING_PHRASE = "Is there anything else I can help you with?"
INACTIVITY_TIMEOUT_SECONDS = 20.0
RESTART_DELAY_SECONDS = 0.3
CONFIRMATION_SECONDS = 4.0

GREETING_PROMPT = "Hello! Introduce yourself and ask how you can help."
MONOLOGUE_PROMPT = "Please continue from where you left off, adding something new to the conversation."


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels


@dataclass(frozen=True)
class PhraseConfig:
    min_seconds: float
    max_seconds: float
    silence_ms: int
    rms_floor: int


@dataclass(frozen=True)
class ChatConfig:
    system_prompt: str
    gemini_model: str
    gemini_api_key: str | None
    gemini_base_url: str
    gemini_timeout: int
    search_grounding: bool
    greeting_prompt: str
    monologue_prompt: str


@dataclass(frozen=True)
class VoiceConfig:
    wake_phrase: str
    auto_stop_seconds: int
    muted: bool
    wake_sound: bool
    language: str
    voice_gender: Literal["female", "male", "any"]
    trailing_phrase: str
    inactivity_seconds: float
    restart_delay_seconds: float
    confirmation_seconds: float


@dataclass(frozen=True)
class AppConfig:
    voice: VoiceConfig
    chat: ChatConfig
    mic: MicConfig
    phrase: PhraseConfig
    stt_endpoint: WyomingEndpoint
    tts_endpoint: WyomingEndpoint
    tts_voice: str | None
    config_path: Path
    log_chat: bool

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> AppConfig:
        """Build the configuration from the environment.

        When ``env`` is omitted the persisted conf file is read first and the
        process environment is layered on top of it.
        """
        if env is None:
            config_path = resolve_config_path()
            source: dict[str, str] = {**read_config_file(config_path), **os.environ}
        else:
            config_path = resolve_config_path(env)
            source = env

        voice = VoiceConfig(
            wake_phrase=collapse_whitespace(source.get("VOXCHAT_WAKE_PHRASE")) or DEFAULT_WAKE_PHRASE,
            auto_stop_seconds=max(0, parse_int(source.get("VOXCHAT_AUTO_STOP_SECONDS"), 0)),
            muted=parse_bool(source.get("VOXCHAT_MUTED"), False),
            wake_sound=parse_bool(source.get("VOXCHAT_WAKE_SOUND"), True),
            language=(source.get("VOXCHAT_LANGUAGE") or DEFAULT_LANGUAGE).strip() or DEFAULT_LANGUAGE,
            voice_gender=_normalize_choice(
                source.get("VOXCHAT_VOICE_GENDER"),
                {"female", "male", "any"},
                "female",
            ),
            trailing_phrase=(source.get("VOXCHAT_TRAILING_PHRASE", DEFAULT_TRAILING_PHRASE)).strip(),
            inactivity_seconds=max(
                1.0, parse_float(source.get("VOXCHAT_INACTIVITY_SECONDS"), INACTIVITY_TIMEOUT_SECONDS)
            ),
            restart_delay_seconds=max(
                0.0, parse_int(source.get("VOXCHAT_RESTART_DELAY_MS"), int(RESTART_DELAY_SECONDS * 1000)) / 1000
            ),
            confirmation_seconds=CONFIRMATION_SECONDS,
        )

        system_prompt = source.get("VOXCHAT_SYSTEM_PROMPT", "").strip()
        prompt_file = source.get("VOXCHAT_SYSTEM_PROMPT_FILE")
        if not system_prompt and prompt_file:
            candidate = Path(prompt_file).expanduser()
            if candidate.is_file():
                system_prompt = candidate.read_text(encoding="utf-8").strip()
        if not system_prompt:
            system_prompt = build_default_system_prompt(voice.trailing_phrase)

        chat = ChatConfig(
            system_prompt=system_prompt,
            gemini_model=source.get("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_api_key=_strip_or_none(source.get("GEMINI_API_KEY") or source.get("API_KEY")),
            gemini_base_url=source.get("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"),
            gemini_timeout=parse_int(source.get("GEMINI_TIMEOUT_SECONDS"), 45),
            search_grounding=parse_bool(source.get("VOXCHAT_SEARCH_GROUNDING"), False),
            greeting_prompt=GREETING_PROMPT,
            monologue_prompt=(source.get("VOXCHAT_MONOLOGUE_PROMPT") or MONOLOGUE_PROMPT).strip(),
        )

        mic_cmd = shlex.split(
            source.get(
                "VOXCHAT_MIC_CMD",
                "arecord -q -t raw -f S16_LE -c 1 -r 16000 -",
            )
        )
        mic = MicConfig(
            command=mic_cmd,
            rate=parse_int(source.get("VOXCHAT_MIC_RATE"), 16000),
            width=parse_int(source.get("VOXCHAT_MIC_WIDTH"), 2),
            channels=parse_int(source.get("VOXCHAT_MIC_CHANNELS"), 1),
            chunk_ms=parse_int(source.get("VOXCHAT_MIC_CHUNK_MS"), 30),
        )
        phrase = PhraseConfig(
            min_seconds=parse_float(source.get("VOXCHAT_MIN_PHRASE_SECONDS"), 0.5),
            max_seconds=parse_float(source.get("VOXCHAT_MAX_PHRASE_SECONDS"), 10.0),
            silence_ms=parse_int(source.get("VOXCHAT_SILENCE_MS"), 1200),
            rms_floor=parse_int(source.get("VOXCHAT_RMS_THRESHOLD"), 120),
        )

        stt_endpoint = WyomingEndpoint(
            host=source.get("WYOMING_WHISPER_HOST", "127.0.0.1"),
            port=parse_int(source.get("WYOMING_WHISPER_PORT"), 10300),
            model=source.get("VOXCHAT_STT_MODEL"),
        )
        tts_endpoint = WyomingEndpoint(
            host=source.get("WYOMING_PIPER_HOST", "127.0.0.1"),
            port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200),
            model=None,
        )

        return AppConfig(
            voice=voice,
            chat=chat,
            mic=mic,
            phrase=phrase,
            stt_endpoint=stt_endpoint,
            tts_endpoint=tts_endpoint,
            tts_voice=_strip_or_none(source.get("VOXCHAT_TTS_VOICE")),
            config_path=config_path,
            log_chat=parse_bool(source.get("VOXCHAT_LOG_CHAT"), True),
        )


def build_default_system_prompt(trailing_phrase: str) -> str:
    prompt = """You are a friendly, knowledgeable voice assistant.
- Replies are read aloud, so keep them short and conversational.
- Answer questions directly in no more than four sentences unless the user
  explicitly asks for more detail.
- When a question sounds like a greeting or small talk, respond warmly and briefly.
- When unsure, ask a clarifying question instead of guessing."""
    if trailing_phrase:
        prompt += f'\n- Always end your reply with the exact sentence: "{trailing_phrase}"'
    return prompt


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _normalize_choice(value: str | None, allowed: set[str], default: str) -> str:
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in allowed:
        return lowered
    return default
