"""Helpers to run instrumented code inside the test process."""

from __future__ import annotations

import textwrap
from typing import Any

from condcov._extract import InstrumentOptions
from condcov._registry import Registry
from condcov._rewrite import RewriteResult, rewrite_source


def run_instrumented(source: str, path: str = "subject.py", **options: Any) -> tuple[dict[str, Any], RewriteResult]:
    """Rewrite ``source`` and execute it in a fresh namespace.

    Records go to whatever registry is installed in :mod:`condcov._runtime`.
    """
    result = rewrite_source(textwrap.dedent(source), path, InstrumentOptions(**options))
    ns: dict[str, Any] = {"__name__": "subject"}
    exec(compile(result.text, path, "exec"), ns)
    return ns, result


def run_original(source: str, path: str = "subject.py") -> dict[str, Any]:
    ns: dict[str, Any] = {"__name__": "subject"}
    exec(compile(textwrap.dedent(source), path, "exec"), ns)
    return ns


def counts_by_code(reg: Registry) -> dict[str, tuple[int, int]]:
    return {c.code: (c.true_count, c.false_count) for c in reg.conditions()}
