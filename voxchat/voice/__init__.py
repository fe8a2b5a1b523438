"""
Voice interaction layer for voxchat

This package provides the hands-free voice loop around the chat model:

- Wake phrase matching: Case-insensitive, whitespace-tolerant detection in transcripts
- Voice commands: Changing the wake phrase and the playback auto-stop by voice
- Recognition sessions: Start/stop/auto-restart policy for manual and non-stop listening
- Speech output: Single-utterance playback with mute, preemption and auto-stop
- Modes: Manual, non-stop listening and monologue (self-continuing) operation
- Chat: Gemini chat session with error classification
- Backends: Wyoming (faster-whisper/Piper) speech services and a console fallback

Key modules:
- config: Configuration management from environment variables and voxchat.conf
- recognition: Recognition session controller
- speech_output: Speech output controller
- modes: Mode coordinator and monologue loop
- assistant: Wiring between voice, chat and display
"""

from __future__ import annotations

__all__ = [
    "assistant",
    "audio",
    "backends",
    "chat",
    "commands",
    "config",
    "console",
    "display",
    "modes",
    "preferences",
    "recognition",
    "speech_output",
    "timers",
    "wake_word",
    "wyoming",
]
