from __future__ import annotations

import os
import shlex
import subprocess
import sys
from collections.abc import Mapping, Sequence
from typing import IO

import condcov
from condcov._errors import TestRunError
from condcov._stats import STATS_ENV
from condcov._util import verbose
from condcov._workspace import Argument, Workspace


def _package_root() -> str:
    """Directory from which the running condcov package is importable."""
    return os.path.dirname(os.path.dirname(os.path.abspath(condcov.__file__)))


def _unique(items: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class PytestRun:
    """Runs ``python -m pytest`` on the instrumented copy."""

    __test__ = False

    def __init__(self, python: str | None = None) -> None:
        self.python = python or sys.executable

    def args(
        self,
        arguments: Sequence[Argument],
        *,
        verbose: bool = False,
        first_time: bool = False,
        immediate: bool = False,
        extra: Sequence[str] = (),
    ) -> list[str]:
        args = [self.python, "-m", "pytest"]
        if verbose:
            args.append("-v")
        # Every run works on a fresh copy, so cached results never apply.
        args += ["-p", "no:cacheprovider", "-p", "condcov._plugin"]
        if first_time:
            args.append("--condcov-first-time")
        if immediate:
            args.append("--condcov-immediately")
        args += _unique([a.tmp_dir() for a in arguments])
        args += list(extra)
        return args

    def env(
        self,
        workspace: Workspace,
        arguments: Sequence[Argument],
        stats_path: str,
        base: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        env = dict(os.environ if base is None else base)
        previous = env.get("PYTHONPATH", "")
        paths = workspace.import_roots()
        paths += [a.search_root for a in arguments]
        paths.append(_package_root())
        paths += previous.split(os.pathsep) if previous else []
        env["PYTHONPATH"] = os.pathsep.join(_unique(paths))
        env[STATS_ENV] = stats_path
        return env

    def run(
        self,
        arguments: Sequence[Argument],
        workspace: Workspace,
        stats_path: str,
        *,
        extra: Sequence[str] = (),
        verbose_output: bool = False,
        first_time: bool = False,
        immediate: bool = False,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
    ) -> None:
        """Run the tests; raises :class:`TestRunError` unless they pass."""
        args = self.args(arguments, verbose=verbose_output, first_time=first_time, immediate=immediate, extra=extra)
        cmdline = shlex.join(args)
        verbose(f"Running {cmdline!r} in {workspace.src!r}")
        try:
            proc = subprocess.run(
                args,
                cwd=workspace.src,
                env=self.env(workspace, arguments, stats_path),
                stdout=stdout,
                stderr=stderr,
                check=False,
            )
        except OSError as e:
            raise TestRunError(f"cannot run {cmdline}: {e.strerror or e}") from e
        if proc.returncode != 0:
            raise TestRunError(f"{cmdline} failed with exit status {proc.returncode}")
        verbose(f"Finished {cmdline}")
