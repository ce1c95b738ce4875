"""The stats file shared between the orchestrator and the instrumented process.

The instrumented process finds the file through the ``CONDCOV_STATS``
environment variable; nothing else is exchanged between the two processes.
The file is a JSON array of objects with exactly the fields ``Start``,
``Code``, ``TrueCount`` and ``FalseCount``. Readers reject anything else so
that a format drift between writer and reader is noticed.
"""

from __future__ import annotations

import dataclasses
import json
import os
import shutil
import tempfile
from collections.abc import Iterable
from typing import Any

from condcov._errors import CoordinationError

STATS_ENV = "CONDCOV_STATS"
DEFAULT_STATS_NAME = "condcov-counts.json"

_FIELDS = ("Start", "Code", "TrueCount", "FalseCount")


@dataclasses.dataclass
class Condition:
    start: str
    code: str
    true_count: int = 0
    false_count: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return self.start, self.code

    def to_json(self) -> dict[str, Any]:
        return {
            "Start": self.start,
            "Code": self.code,
            "TrueCount": self.true_count,
            "FalseCount": self.false_count,
        }


def _count(value: Any, field: str, where: str) -> int:
    # bool is a subclass of int; a boolean count is a schema violation.
    if not isinstance(value, int) or isinstance(value, bool):
        raise CoordinationError(f"{where}: field {field!r} must be an integer, got {value!r}")
    if value < 0:
        raise CoordinationError(f"{where}: field {field!r} must not be negative, got {value}")
    return value


def _condition_from_json(obj: Any, where: str) -> Condition:
    if not isinstance(obj, dict):
        raise CoordinationError(f"{where}: expected an object, got {type(obj).__name__}")
    unknown = sorted(set(obj) - set(_FIELDS))
    if unknown:
        raise CoordinationError(f"{where}: unknown field {unknown[0]!r}")
    missing = [f for f in _FIELDS if f not in obj]
    if missing:
        raise CoordinationError(f"{where}: missing field {missing[0]!r}")
    for field in ("Start", "Code"):
        if not isinstance(obj[field], str):
            raise CoordinationError(f"{where}: field {field!r} must be a string, got {obj[field]!r}")
    return Condition(
        obj["Start"],
        obj["Code"],
        _count(obj["TrueCount"], "TrueCount", where),
        _count(obj["FalseCount"], "FalseCount", where),
    )


def parse_stats(text: str, *, source: str = "<stats>") -> list[Condition]:
    """Decode the JSON text of a stats file, enforcing the strict schema."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CoordinationError(f"{source}: invalid JSON: {e}") from e
    if not isinstance(data, list):
        raise CoordinationError(f"{source}: expected a JSON array, got {type(data).__name__}")
    return [_condition_from_json(obj, f"{source}: record {i}") for i, obj in enumerate(data)]


def load_stats(path: str) -> list[Condition]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise CoordinationError(f"cannot read stats file {path}: {e.strerror or e}") from e
    return parse_stats(text, source=path)


def dumps_stats(conditions: Iterable[Condition]) -> str:
    return json.dumps([c.to_json() for c in conditions], indent=2, ensure_ascii=False) + "\n"


def dump_stats(path: str, conditions: Iterable[Condition]) -> None:
    """Write the stats file atomically.

    The data goes to a temporary file in the same directory first, which is
    then renamed over ``path``, so a concurrent reader sees either the old or
    the new content, never a partial one.
    """
    text = dumps_stats(conditions)
    directory = os.path.dirname(os.path.abspath(path))
    try:
        fd, tmp = tempfile.mkstemp(prefix=".condcov-", suffix=".tmp", dir=directory)
    except OSError as e:
        raise CoordinationError(f"cannot write stats file {path}: {e.strerror or e}") from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        # mkstemp creates the file owner-only; keep the mode of the file it replaces.
        if os.path.exists(path):
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise CoordinationError(f"cannot write stats file {path}: {e.strerror or e}") from e


def seed_stats(path: str, conditions: Iterable[Condition]) -> list[Condition]:
    """Make sure every condition appears in the stats file at ``path``.

    An existing file is loaded and kept as is; conditions it does not know
    yet are appended with zero counts. Returns what was written.
    """
    merged = load_stats(path) if os.path.exists(path) else []
    known = {c.key for c in merged}
    for c in conditions:
        if c.key not in known:
            merged.append(Condition(c.start, c.code))
            known.add(c.key)
    dump_stats(path, merged)
    return merged
