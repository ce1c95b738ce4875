"""Turn the counts of a finished run into a coverage report.

Each condition contributes two coverable facts: it was true at least once,
and it was false at least once. The summary line is ``covered/total`` over
these facts. Conditions that were observed both ways are fully covered and
only listed on request.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable
from typing import IO

from condcov._stats import Condition
from condcov._term import bold, red, yellow
from condcov._util import quote


def covered_facts(conditions: Iterable[Condition]) -> int:
    return sum((c.true_count > 0) + (c.false_count > 0) for c in conditions)


def total_facts(conditions: Iterable[Condition]) -> int:
    return 2 * sum(1 for _ in conditions)


def is_fully_covered(c: Condition) -> bool:
    return c.true_count > 0 and c.false_count > 0


def _capped(count: int) -> int:
    if count > 1:
        return 2
    return count


def classify(c: Condition) -> str:
    """Describe the observed outcomes, e.g. ``once true but never false``."""
    t, f = c.true_count, c.false_count
    return {
        0: "never evaluated",
        1: "once false but never true",
        2: f"{f} times false but never true",
        3: "once true but never false",
        4: "once true and once false",
        5: f"once true and {f} times false",
        6: f"{t} times true but never false",
        7: f"{t} times true and once false",
        8: f"{t} times true and {f} times false",
    }[3 * _capped(t) + _capped(f)]


def format_condition(c: Condition) -> str:
    return f"{c.start}: condition {quote(c.code)} was {classify(c)}"


def listed(conditions: Iterable[Condition], *, list_all: bool = False) -> list[Condition]:
    """The conditions the report shows in detail."""
    return [c for c in conditions if list_all or not is_fully_covered(c)]


def summary_line(conditions: list[Condition]) -> str:
    return f"Branch coverage: {covered_facts(conditions)}/{total_facts(conditions)}"


def print_report(
    conditions: list[Condition],
    *,
    list_all: bool = False,
    out: IO[str] | None = None,
) -> None:
    out = out or sys.stdout
    out.write("\n")
    out.write(bold(summary_line(conditions), stream=out) + "\n")
    for c in listed(conditions, list_all=list_all):
        line = format_condition(c)
        if c.true_count == 0 and c.false_count == 0:
            line = red(line, stream=out)
        elif not is_fully_covered(c):
            line = yellow(line, stream=out)
        out.write(line + "\n")
