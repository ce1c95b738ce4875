from __future__ import annotations

import dataclasses
import os
from typing import IO

from condcov._errors import TestRunError
from condcov._extract import InstrumentOptions
from condcov._report import print_report
from condcov._rewrite import instrument_tree
from condcov._runner import PytestRun
from condcov._stats import Condition, load_stats, seed_stats
from condcov._util import error, verbose
from condcov._workspace import Argument, Workspace, resolve_argument


@dataclasses.dataclass
class RunConfig:
    path: str = "."
    first_time: bool = False
    immediate: bool = False
    keep: bool = False
    list_all: bool = False
    cover_tests: bool = False
    cover_generated: bool = False
    stats: str | None = None
    test_options: list[str] = dataclasses.field(default_factory=list)
    verbose: bool = False

    def instrument_options(self) -> InstrumentOptions:
        return InstrumentOptions(
            cover_tests=self.cover_tests,
            cover_generated=self.cover_generated,
            first_time=self.first_time,
            immediate=self.immediate,
        )


@dataclasses.dataclass
class RunResult:
    exit_code: int
    conditions: list[Condition]
    workspace: str
    stats_path: str


def instrument_argument(workspace: Workspace, arg: Argument, options: InstrumentOptions) -> list[Condition]:
    """Rewrite the argument's copy in the workspace; returns its conditions at zero counts."""
    points = instrument_tree(
        workspace.file_src(arg.tmp_dir()),
        arg.display_dir(),
        options,
        only=arg.base(),
    )
    verbose(f"Instrumented {arg.arg_name} to {workspace.file_src(arg.tmp_name)}")
    return [Condition(p.start, p.code) for p in points]


def run(
    config: RunConfig,
    *,
    runner: PytestRun | None = None,
    out: IO[str] | None = None,
) -> RunResult:
    """Instrument, test, report.

    A failing test run still produces the report; its status becomes the
    exit code of the result. The workspace is released on every path.
    """
    arg = resolve_argument(config.path)
    workspace = Workspace.create(keep=config.keep)
    try:
        if config.stats:
            stats_path = os.path.abspath(config.stats)
        else:
            stats_path = workspace.default_stats_path()

        workspace.copy_argument(arg)
        conditions = instrument_argument(workspace, arg, config.instrument_options())
        seed_stats(stats_path, conditions)

        exit_code = 0
        try:
            (runner or PytestRun()).run(
                [arg],
                workspace,
                stats_path,
                extra=config.test_options,
                verbose_output=config.verbose,
                first_time=config.first_time,
                immediate=config.immediate,
            )
        except TestRunError as e:
            error(str(e))
            exit_code = e.exit_code

        results = load_stats(stats_path)
        print_report(results, list_all=config.list_all, out=out)
        return RunResult(exit_code, results, workspace.path, stats_path)
    finally:
        workspace.release()
