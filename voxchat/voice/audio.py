"""
Audio plumbing for the Wyoming speech backends

- ArecordStream: fixed-size PCM chunks from a capture command (arecord by default)
- AplaySink: raw PCM into pw-play, paplay or aplay, whichever is installed
- record_phrase: one utterance, ended by trailing silence or a length cap
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import os
import shutil
import sys
from array import array
from asyncio.subprocess import Process

from .config import MicConfig, PhraseConfig

LOGGER = logging.getLogger(__name__)

PLAYER_CANDIDATES = ("pw-play", "paplay", "aplay")


async def _reap(proc: Process, *, kill: bool, timeout: float) -> None:
    """Signal ``proc`` if it is still running and wait up to ``timeout`` for it to exit."""
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            if kill:
                proc.kill()
            else:
                proc.terminate()
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(proc.wait(), timeout=timeout)


class ArecordStream:
    """Microphone capture through a subprocess writing raw PCM to stdout."""

    def __init__(
        self,
        command: list[str],
        bytes_per_chunk: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command = command
        self.bytes_per_chunk = bytes_per_chunk
        self._logger = logger or LOGGER
        self._proc: Process | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None

    async def start(self) -> None:
        if self.running:
            return
        self._logger.debug("[mic] capture: %s", " ".join(self.command))
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def read_chunk(self) -> bytes:
        proc = self._proc
        if proc is None or proc.stdout is None:
            raise RuntimeError("Microphone stream is not running")
        try:
            return await proc.stdout.readexactly(self.bytes_per_chunk)
        except asyncio.IncompleteReadError as exc:
            detail = await self._stderr_tail(proc)
            suffix = f" ({detail})" if detail else ""
            raise RuntimeError(f"Microphone stream ended unexpectedly{suffix}") from exc

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is not None:
            self._logger.debug("[mic] capture stopped")
            await _reap(proc, kill=False, timeout=2)

    @staticmethod
    async def _stderr_tail(proc: Process) -> str:
        if proc.stderr is None:
            return ""
        try:
            raw = await asyncio.wait_for(proc.stderr.read(), timeout=1)
        except (asyncio.TimeoutError, OSError):
            return ""
        return raw.decode("utf-8", errors="ignore").strip()


class AplaySink:
    """Raw PCM playback through the first available command-line player.

    ``VOXCHAT_AUDIO_PLAYER`` pins a player when no binary is passed in.
    """

    def __init__(self, binary: str | None = None, logger: logging.Logger | None = None) -> None:
        self.binary = binary or os.environ.get("VOXCHAT_AUDIO_PLAYER") or "auto"
        self._logger = logger or LOGGER
        self._proc: Process | None = None

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        player = _determine_player(self.binary, self._logger)
        try:
            command = build_player_command(player, rate, width, channels)
        except ValueError as exc:
            self._logger.warning("[playback] %s; using aplay", exc)
            command = build_player_command("aplay", rate, width, channels)
        self._logger.debug("[playback] %s", " ".join(command))
        self._proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def write(self, chunk: bytes) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise RuntimeError("Playback is not active")
        try:
            proc.stdin.write(chunk)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.abort()
            raise RuntimeError("Playback process exited unexpectedly") from exc

    async def stop(self) -> None:
        """Close the player's input and wait for it to finish what it has."""
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.stdin is not None:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=30)

    async def abort(self) -> None:
        """Kill the player, dropping buffered audio."""
        proc, self._proc = self._proc, None
        if proc is not None:
            await _reap(proc, kill=True, timeout=2)


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Compute RMS (Root Mean Square) for an audio chunk."""
    if not chunk or sample_width <= 0:
        return 0
    frames = len(chunk) // sample_width
    if frames <= 0:
        return 0
    trimmed = chunk[: frames * sample_width]
    typecode = {1: "b", 2: "h", 4: "i"}.get(sample_width)
    if typecode:
        samples = array(typecode)
        samples.frombytes(trimmed)
        if sample_width > 1 and sys.byteorder != "little":
            samples.byteswap()
        total = math.fsum(value * value for value in samples)
    else:
        total = 0.0
        for i in range(0, len(trimmed), sample_width):
            sample = int.from_bytes(trimmed[i : i + sample_width], "little", signed=True)
            total += sample * sample
    return int(math.sqrt(total / frames))


async def record_phrase(stream: ArecordStream, mic: MicConfig, phrase: PhraseConfig) -> tuple[bytes, bool]:
    """Record until trailing silence or the length cap.

    Returns the captured audio and whether any chunk rose above the RMS floor.
    """
    chunk_ms = mic.chunk_ms
    min_chunks = int(max(1, (phrase.min_seconds * 1000) / chunk_ms))
    max_chunks = int(max(1, (phrase.max_seconds * 1000) / chunk_ms))
    silence_chunks = int(max(1, phrase.silence_ms / chunk_ms))
    buffer = bytearray()
    heard_speech = False
    silence_run = 0
    chunks = 0
    while chunks < max_chunks:
        chunk = await stream.read_chunk()
        buffer.extend(chunk)
        if compute_rms(chunk, mic.width) < phrase.rms_floor:
            if chunks >= min_chunks:
                silence_run += 1
                if silence_run >= silence_chunks:
                    break
        else:
            heard_speech = True
            silence_run = 0
        chunks += 1
    return bytes(buffer), heard_speech


def _pw_format(width: int) -> str | None:
    return {1: "s8", 2: "s16", 4: "s32"}.get(width)


def _paplay_format(width: int) -> str:
    return {1: "s8", 2: "s16le", 3: "s24le", 4: "s32le"}.get(width, "s16le")


def _alsa_format(width: int) -> str:
    return {1: "U8", 2: "S16_LE", 3: "S24_LE", 4: "S32_LE"}.get(width, "S16_LE")


def build_player_command(player: str, rate: int, width: int, channels: int) -> list[str]:
    if player == "pw-play":
        fmt = _pw_format(width)
        if not fmt:
            raise ValueError(f"pw-play has no format for width={width}")
        return ["pw-play", "--raw", "--rate", str(rate), "--channels", str(channels), "--format", fmt, "-"]
    if player == "paplay":
        return [
            "paplay",
            "--raw",
            "--rate",
            str(rate),
            "--channels",
            str(channels),
            f"--format={_paplay_format(width)}",
            "-",
        ]
    return ["aplay", "-q", "-t", "raw", "-f", _alsa_format(width), "-c", str(channels), "-r", str(rate), "-"]


def _supported_player(binary: str) -> bool:
    if os.path.isabs(binary):
        return os.access(binary, os.X_OK)
    return shutil.which(binary) is not None


def _determine_player(preferred: str, logger: logging.Logger) -> str:
    if preferred != "auto":
        if _supported_player(preferred):
            return preferred
        logger.warning("[playback] Requested player '%s' not found; falling back to auto-detection", preferred)
    for candidate in PLAYER_CANDIDATES:
        if _supported_player(candidate):
            return candidate
    return "aplay"
