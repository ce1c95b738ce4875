from condcov._cli import __version__, main
from condcov._engine import RunConfig, RunResult, run
from condcov._errors import (
    CondcovError,
    CoordinationError,
    InstrumentationError,
    TestRunError,
    UsageError,
    WorkspaceError,
)
from condcov._extract import DecisionPoint, InstrumentOptions, extract_decision_points
from condcov._registry import BatchPersistence, ImmediatePersistence, Registry
from condcov._report import classify, print_report
from condcov._rewrite import instrument_tree, rewrite_source
from condcov._stats import Condition, dump_stats, load_stats

__all__ = [
    "BatchPersistence",
    "CondcovError",
    "Condition",
    "CoordinationError",
    "DecisionPoint",
    "ImmediatePersistence",
    "InstrumentOptions",
    "InstrumentationError",
    "Registry",
    "RunConfig",
    "RunResult",
    "TestRunError",
    "UsageError",
    "WorkspaceError",
    "__version__",
    "classify",
    "dump_stats",
    "extract_decision_points",
    "instrument_tree",
    "load_stats",
    "main",
    "print_report",
    "rewrite_source",
    "run",
]
