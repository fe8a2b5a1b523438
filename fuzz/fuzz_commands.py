import sys

import atheris

with atheris.instrument_imports():
    from voxchat.voice.commands import parse_voice_command
    from voxchat.voice.speech_output import prepare_speech_text


def TestOneInput(data: bytes) -> None:
    value = data.decode("utf-8", errors="ignore")

    command = parse_voice_command(value)
    if command.kind == "set_auto_stop":
        assert command.seconds >= 0
    elif command.kind == "change_wake_phrase":
        assert command.text and command.text == command.text.strip()
    elif command.kind == "await":
        assert not value.strip()

    prepare_speech_text(value, "Is there anything else I can help you with?")


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
