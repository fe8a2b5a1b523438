"""Wake chime synthesis and sample playback for voxchat."""

from __future__ import annotations

import logging
import math
import os
import shutil
import subprocess  # nosec B404 - subprocess used for sample playback
import wave
from pathlib import Path

_LOGGER = logging.getLogger("voxchat.audio")
_CHIME_FILENAME = "voxchat-wake-chime.wav"
_CHIME_SAMPLE_RATE = 48_000
_CHIME_FREQUENCY_HZ = 880
_CHIME_MAX_AMPLITUDE = 20_000
_CHIME_DURATION_SECONDS = 0.5
_CHIME_DECAY_RATE = 3.5
_CHIME_FADE_IN_SECONDS = 0.01


def _runtime_env() -> dict[str, str]:
    env = os.environ.copy()
    env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    return env


def _chime_sample_path() -> Path:
    runtime_dir = Path(_runtime_env()["XDG_RUNTIME_DIR"])
    return runtime_dir / _CHIME_FILENAME


def chime_samples() -> list[int]:
    """Return the wake chime as signed 16-bit sample values.

    A decaying sine wave with a short linear fade-in so the tone starts
    without a click.
    """
    total = max(1, int(_CHIME_SAMPLE_RATE * _CHIME_DURATION_SECONDS))
    fade_in_samples = max(1, int(_CHIME_SAMPLE_RATE * _CHIME_FADE_IN_SECONDS))
    samples: list[int] = []
    for i in range(total):
        t = i / _CHIME_SAMPLE_RATE
        decay = math.exp(-_CHIME_DECAY_RATE * t / _CHIME_DURATION_SECONDS)
        fade_in = min(1.0, i / fade_in_samples)
        angle = 2 * math.pi * _CHIME_FREQUENCY_HZ * t
        samples.append(int(fade_in * decay * _CHIME_MAX_AMPLITUDE * math.sin(angle)))
    return samples


def render_chime_sample(destination: Path) -> Path | None:
    """Render the wake chime to the provided path."""
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with wave.open(str(destination), "wb") as wav_file:
            wav_file.setnchannels(1)
            wav_file.setsampwidth(2)
            wav_file.setframerate(_CHIME_SAMPLE_RATE)
            frames = b"".join(value.to_bytes(2, byteorder="little", signed=True) for value in chime_samples())
            wav_file.writeframes(frames)
        return destination
    except OSError as exc:
        _LOGGER.debug("[audio] Unable to create chime sample at %s: %s", destination, exc)
        return None


def _ensure_chime_sample() -> Path | None:
    path = _chime_sample_path()
    if path.exists():
        return path
    return render_chime_sample(path)


def _play_sample(sample_path: Path | None) -> None:
    """Play a sound sample using available audio player."""
    if not sample_path:
        return
    if not sample_path.exists():
        return
    player = None
    for candidate in ("pw-play", "paplay", "aplay"):
        if shutil.which(candidate):
            player = candidate
            break
    if not player:
        _LOGGER.debug("[audio] No audio player available")
        return
    try:
        subprocess.run(  # nosec B603 - hardcoded command array
            [player, str(sample_path)],
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            env=_runtime_env(),
        )
    except OSError as exc:
        _LOGGER.debug("[audio] Failed to play sample: %s", exc)


def play_wake_chime() -> None:
    """Play the short tone that acknowledges a detected wake phrase (blocking)."""
    _play_sample(_ensure_chime_sample())
