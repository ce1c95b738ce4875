from __future__ import annotations

import json
import sys

_VERBOSE = False


def set_verbose(enabled: bool) -> None:
    global _VERBOSE
    _VERBOSE = enabled


def verbose(msg: str) -> None:
    """Progress message, shown only with --verbose."""
    if _VERBOSE:
        print(msg, file=sys.stderr)


def error(msg: str) -> None:
    print(f"error: {msg}", file=sys.stderr)


def quote(text: str) -> str:
    """Double-quoted, escaped rendering of a condition's source text."""
    return json.dumps(text, ensure_ascii=False)
