"""Error taxonomy for condcov.

Every fatal condition of a run maps onto one of these classes, and each
class carries the process exit status the CLI returns for it.
"""

from __future__ import annotations


class CondcovError(Exception):
    """Base class for all condcov failures."""

    exit_code = 1


class UsageError(CondcovError):
    """Bad command line input. No workspace is created."""

    exit_code = 2


class WorkspaceError(CondcovError):
    """The scratch workspace could not be resolved, created or populated."""


class InstrumentationError(CondcovError):
    """A source file could not be parsed or rewritten safely."""


class TestRunError(CondcovError):
    """The test subprocess could not be launched or returned nonzero."""

    __test__ = False  # not a pytest test class


class CoordinationError(CondcovError):
    """The stats file is missing, unreadable or violates the schema."""
