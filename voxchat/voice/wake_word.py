"""Wake phrase matching on recognized transcripts."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

# Separators a recognizer tends to put between the wake phrase and the command
_LEADING_SEPARATORS = " \t\r\n,.!?;:-"


@dataclass(frozen=True)
class WakeMatch:
    start: int
    end: int
    command: str


@lru_cache(maxsize=32)
def build_wake_pattern(wake_phrase: str) -> re.Pattern[str] | None:
    """Compile a case-insensitive pattern that tolerates any whitespace between words."""
    words = (wake_phrase or "").split()
    if not words:
        return None
    body = r"\s+".join(re.escape(word) for word in words)
    return re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)


def match_wake_phrase(transcript: str | None, wake_phrase: str | None) -> WakeMatch | None:
    """Find the wake phrase in a transcript.

    Returns the match span and the text that follows it, or None when the
    phrase is absent (or blank).
    """
    if not transcript:
        return None
    pattern = build_wake_pattern(wake_phrase or "")
    if pattern is None:
        return None
    match = pattern.search(transcript)
    if not match:
        return None
    command = transcript[match.end() :].lstrip(_LEADING_SEPARATORS).rstrip()
    return WakeMatch(start=match.start(), end=match.end(), command=command)
