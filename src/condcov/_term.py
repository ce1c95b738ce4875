from __future__ import annotations

import os
import sys
from typing import IO

_COLOR: bool | None = None


def supports_color(stream: IO[str] | None = None) -> bool:
    global _COLOR
    if _COLOR is not None:
        return _COLOR
    stream = stream or sys.stdout
    return not (
        os.environ.get("NO_COLOR", "") != ""
        or os.environ.get("TERM", "") == "dumb"
        or not hasattr(stream, "isatty")
        or not stream.isatty()
    )


def force_color(enabled: bool | None) -> None:
    """Override terminal detection; ``None`` restores it."""
    global _COLOR
    _COLOR = enabled


def style(text: str, *codes: int, stream: IO[str] | None = None) -> str:
    if not codes or not supports_color(stream):
        return text
    seq = ";".join(str(c) for c in codes)
    return f"\033[{seq}m{text}\033[0m"


def red(text: str, stream: IO[str] | None = None) -> str:
    return style(text, 31, stream=stream)


def yellow(text: str, stream: IO[str] | None = None) -> str:
    return style(text, 33, stream=stream)


def bold(text: str, stream: IO[str] | None = None) -> str:
    return style(text, 1, stream=stream)
