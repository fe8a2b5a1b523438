"""Tests for wake phrase matching."""

from __future__ import annotations

import pytest
from voxchat.voice.wake_word import build_wake_pattern, match_wake_phrase


class TestMatchWakePhrase:
    def test_command_follows_phrase(self):
        match = match_wake_phrase("hey assistant what time is it", "hey assistant")
        assert match is not None
        assert match.command == "what time is it"
        assert (match.start, match.end) == (0, len("hey assistant"))

    def test_case_insensitive(self):
        match = match_wake_phrase("HEY Assistant tell me a joke", "hey assistant")
        assert match is not None
        assert match.command == "tell me a joke"

    def test_tolerates_extra_whitespace_between_words(self):
        match = match_wake_phrase("hey \t  assistant   play music", "hey assistant")
        assert match is not None
        assert match.command == "play music"

    def test_phrase_in_middle_of_transcript(self):
        match = match_wake_phrase("so um hey assistant open the news", "hey assistant")
        assert match is not None
        assert match.start == len("so um ")
        assert match.command == "open the news"

    @pytest.mark.parametrize(
        "transcript",
        ["hey assistant, what's up", "hey assistant. what's up", "hey assistant! what's up", "hey assistant - what's up"],
    )
    def test_leading_punctuation_stripped(self, transcript):
        match = match_wake_phrase(transcript, "hey assistant")
        assert match is not None
        assert match.command == "what's up"

    def test_phrase_alone_gives_empty_command(self):
        match = match_wake_phrase("Hey assistant.", "hey assistant")
        assert match is not None
        assert match.command == ""

    def test_no_match(self):
        assert match_wake_phrase("what time is it", "hey assistant") is None

    def test_partial_word_does_not_match(self):
        assert match_wake_phrase("hey assistants unite", "hey assistant") is None
        assert match_wake_phrase("they assistant", "hey assistant") is None

    def test_regex_characters_in_phrase_are_literal(self):
        assert match_wake_phrase("ok c++ bot go", "c++ bot") is not None
        assert match_wake_phrase("ok cc bot go", "c.. bot") is None

    @pytest.mark.parametrize("phrase", ["", "   ", None])
    def test_blank_phrase_never_matches(self, phrase):
        assert match_wake_phrase("anything at all", phrase) is None

    def test_empty_transcript(self):
        assert match_wake_phrase("", "hey assistant") is None
        assert match_wake_phrase(None, "hey assistant") is None

    def test_first_occurrence_wins(self):
        match = match_wake_phrase("computer say computer", "computer")
        assert match is not None
        assert match.command == "say computer"


@pytest.mark.parametrize(
    "transcript",
    [
        "hey assistant what time is it",
        "okay HEY   assistant, turn it up!  ",
        "hey assistant",
        "well hey assistant... - are you there?",
        "hey assistant\n\tremind me: eggs",
        "hey assistant hey assistant twice",
    ],
)
def test_command_is_text_after_phrase(transcript):
    match = match_wake_phrase(transcript, "hey assistant")
    assert match is not None
    assert " ".join(transcript[match.start : match.end].lower().split()) == "hey assistant"
    suffix = transcript[match.end :]
    assert match.command == suffix.lstrip(" \t\r\n,.!?;:-").rstrip()
    assert suffix.rstrip().endswith(match.command)


def test_build_wake_pattern_joins_words_with_whitespace_class():
    pattern = build_wake_pattern("Hello  there")
    assert pattern is not None
    assert pattern.search("hello\nthere")
    assert build_wake_pattern("  ") is None
