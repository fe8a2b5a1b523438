import sys

import atheris

with atheris.instrument_imports():
    from voxchat.voice.wake_word import match_wake_phrase


def TestOneInput(data: bytes) -> None:
    fdp = atheris.FuzzedDataProvider(data)
    wake_phrase = fdp.ConsumeUnicodeNoSurrogates(32)
    transcript = fdp.ConsumeUnicodeNoSurrogates(256)

    match = match_wake_phrase(transcript, wake_phrase)
    if match is None:
        return
    assert 0 <= match.start < match.end <= len(transcript)
    assert match.command == match.command.rstrip()
    assert match.command in transcript[match.end :]


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
