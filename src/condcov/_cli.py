from __future__ import annotations

import argparse
import sys

from condcov._engine import RunConfig, run
from condcov._errors import CondcovError, UsageError
from condcov._term import force_color
from condcov._util import error, set_verbose

__version__ = "0.9.5"


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="condcov",
        description="Measure condition coverage of a Python package by running its tests on an instrumented copy.",
    )
    p.add_argument("paths", nargs="*", metavar="path", help="package directory or source file (default: .)")
    p.add_argument("--first-time", action="store_true",
                   help="print each condition to stderr when it is reached the first time")
    p.add_argument("--immediately", action="store_true",
                   help="persist the coverage immediately at each check point")
    p.add_argument("--keep", action="store_true", help="don't remove the temporary working directory")
    p.add_argument("--list-all", action="store_true",
                   help="at finish, print also those conditions that are fully covered")
    p.add_argument("--stats", metavar="FILE", help="load and persist the JSON coverage data to this file")
    p.add_argument("--test", metavar="OPTION", action="append", default=[],
                   help="pass the option to pytest, such as --test=-x")
    p.add_argument("--cover-test", action="store_true", help="cover the test code as well")
    p.add_argument("--cover-generated", action="store_true",
                   help="cover files marked as generated code as well")
    p.add_argument("-v", "--verbose", action="store_true", help="show progress messages")
    p.add_argument("--no-color", action="store_true", help="disable ANSI colors")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def main(argv: list[str] | None = None) -> int:
    p = _parser()
    args = p.parse_args(argv)

    set_verbose(args.verbose)
    if args.no_color:
        force_color(False)

    try:
        if len(args.paths) > 1:
            raise UsageError("checking multiple packages is not supported")
        config = RunConfig(
            path=args.paths[0] if args.paths else ".",
            first_time=args.first_time,
            immediate=args.immediately,
            keep=args.keep,
            list_all=args.list_all,
            cover_tests=args.cover_test,
            cover_generated=args.cover_generated,
            stats=args.stats,
            test_options=args.test,
            verbose=args.verbose,
        )
        result = run(config)
    except UsageError as e:
        p.print_usage(sys.stderr)
        error(str(e))
        return e.exit_code
    except CondcovError as e:
        error(str(e))
        return e.exit_code
    return result.exit_code
