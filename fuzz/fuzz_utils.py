import sys

import atheris

with atheris.instrument_imports():
    from voxchat.utils import (
        chunk_bytes,
        collapse_whitespace,
        parse_bool,
        parse_float,
        parse_int,
    )


def TestOneInput(data: bytes) -> None:
    """Fuzz utility parsing functions with arbitrary input."""
    value = data.decode("utf-8", errors="ignore")

    # Parsers fall back to their defaults and never raise
    parse_bool(value)
    parse_int(value, default=0)
    parse_float(value, default=0.0)

    collapsed = collapse_whitespace(value)
    assert collapsed == collapsed.strip()
    assert "  " not in collapsed

    if len(data) > 0:
        size = (data[0] % 64) + 1  # 1-64 byte chunks
        assert b"".join(chunk_bytes(data, size)) == data


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
