"""Shared helpers for talking to Wyoming STT and TTS services."""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing, asynccontextmanager

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.event import Event
from wyoming.info import Describe, Info
from wyoming.tts import Synthesize, SynthesizeVoice

from voxchat.utils import await_with_timeout, chunk_bytes

from .audio import AplaySink
from .config import MicConfig, WyomingEndpoint
from .speech_output import Voice

LoggerLike = logging.Logger | None


@asynccontextmanager
async def _connection(endpoint: WyomingEndpoint, timeout: float | None) -> AsyncIterator[AsyncTcpClient]:
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    try:
        yield client
    finally:
        await client.disconnect()


async def _send(client: AsyncTcpClient, events: list[Event], timeout: float | None) -> None:
    for event in events:
        await await_with_timeout(client.write_event(event), timeout)


async def _receive(client: AsyncTcpClient, timeout: float | None) -> AsyncIterator[Event]:
    """Yield server events until the connection closes."""
    while True:
        event = await await_with_timeout(client.read_event(), timeout)
        if event is None:
            return
        yield event


async def transcribe_audio(
    audio_bytes: bytes,
    *,
    endpoint: WyomingEndpoint,
    mic: MicConfig,
    language: str | None = None,
    model: str | None = None,
    timeout: float | None = None,
    logger: LoggerLike = None,
) -> str | None:
    """Send one recorded phrase to a Wyoming STT server and return its transcript.

    Returns None when the server hangs up without producing a transcript.
    """
    fmt = {"rate": mic.rate, "width": mic.width, "channels": mic.channels}
    request = [Transcribe(name=model or endpoint.model, language=language).event(), AudioStart(**fmt).event()]
    request.extend(AudioChunk(audio=chunk, **fmt).event() for chunk in chunk_bytes(audio_bytes, mic.bytes_per_chunk))
    request.append(AudioStop().event())

    async with _connection(endpoint, timeout) as client:
        await _send(client, request, timeout)
        async with aclosing(_receive(client, timeout)) as events:
            async for event in events:
                if Transcript.is_type(event.type):
                    return Transcript.from_event(event).text
    if logger:
        logger.debug("[wyoming] STT connection closed before a transcript arrived")
    return None


async def _tts_events(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> AsyncIterator[Event]:
    voice = SynthesizeVoice(name=voice_name) if voice_name else None
    async with _connection(endpoint, timeout) as client:
        await _send(client, [Synthesize(text=text, voice=voice).event()], timeout)
        async with aclosing(_receive(client, timeout)) as events:
            async for event in events:
                yield event
                if AudioStop.is_type(event.type):
                    return


async def play_tts_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: AplaySink,
    voice_name: str | None = None,
    on_audio_start: Callable[[], None] | None = None,
    timeout: float | None = None,
) -> None:
    """Synthesize ``text`` and stream the audio into ``sink`` as it arrives.

    ``on_audio_start`` fires once, when the first audio format header arrives.
    A failure or cancellation aborts the player instead of letting it drain.
    """
    announced = False
    try:
        async with aclosing(_tts_events(text, endpoint=endpoint, voice_name=voice_name, timeout=timeout)) as events:
            async for event in events:
                if AudioStart.is_type(event.type):
                    header = AudioStart.from_event(event)
                    await sink.start(header.rate, header.width, header.channels)
                    if on_audio_start and not announced:
                        on_audio_start()
                    announced = True
                elif AudioChunk.is_type(event.type):
                    await sink.write(AudioChunk.from_event(event).audio)
    except BaseException:
        await sink.abort()
        raise
    await sink.stop()


async def list_tts_voices(
    *,
    endpoint: WyomingEndpoint,
    timeout: float | None = None,
) -> list[Voice]:
    """Ask the TTS service which voices it has installed."""
    async with _connection(endpoint, timeout) as client:
        await _send(client, [Describe().event()], timeout)
        async with aclosing(_receive(client, timeout)) as events:
            async for event in events:
                if Info.is_type(event.type):
                    return voices_from_info(Info.from_event(event))
    return []


def voices_from_info(info: Info) -> list[Voice]:
    voices: list[Voice] = []
    for program in info.tts or []:
        for tts_voice in program.voices or []:
            if tts_voice.installed is False:
                continue
            gender = _guess_gender(tts_voice.description)
            for language in tts_voice.languages or [""]:
                voices.append(Voice(name=tts_voice.name, language=language, gender=gender))
    return voices


def _guess_gender(description: str | None) -> str | None:
    words = set(re.findall(r"[a-z]+", (description or "").lower()))
    if words & {"female", "woman"}:
        return "female"
    if words & {"male", "man"}:
        return "male"
    return None
