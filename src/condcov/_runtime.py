"""Process entry point of the registry inside an instrumented program.

Every rewritten module starts with::

    import condcov._runtime as _condcov_rt; _condcov = _condcov_rt.attach((...), first_time=False, immediate=False)

Under ``condcov`` the registry is built by the pytest plugin in
:mod:`condcov._plugin` and put in place with :func:`install` before any
instrumented module is imported. Processes the plugin does not reach, such
as subprocesses started by the tests, get theirs from the first
:func:`attach`, which builds it from the ``CONDCOV_STATS`` environment
variable and flushes it at exit. Failing to read or write the stats file
ends the process: counts that cannot be persisted make the run meaningless.
"""

from __future__ import annotations

import atexit
import os
import sys
import threading
from collections.abc import Iterable
from typing import Any

from condcov._errors import CoordinationError
from condcov._registry import BatchPersistence, CounterRecord, ImmediatePersistence, Registry
from condcov._stats import STATS_ENV

_lock = threading.Lock()
_registry: Registry | None = None


class FileRecorder:
    """The ``_condcov`` object of one instrumented module."""

    __slots__ = ("_records", "_registry")

    def __init__(self, registry: Registry, records: list[CounterRecord]) -> None:
        self._registry = registry
        self._records = records

    def truth(self, index: int, value: Any) -> bool:
        return self._registry.record(self._records[index], bool(value))

    def value(self, index: int, value: Any) -> Any:
        self._registry.record(self._records[index], bool(value))
        return value


def _die(err: CoordinationError) -> None:
    print(f"condcov: {err}", file=sys.stderr, flush=True)
    os._exit(1)


def install(registry: Registry | None) -> None:
    """Make ``registry`` the one every later :func:`attach` uses."""
    global _registry
    with _lock:
        _registry = registry


def uninstall() -> None:
    install(None)


def current() -> Registry | None:
    return _registry


def bootstrap(*, first_time: bool = False, immediate: bool = False, at_exit: bool = True) -> Registry:
    """Build the registry of this process from the environment.

    With ``at_exit``, the counts are flushed once more when the interpreter
    exits; an owner that flushes by itself passes False.
    """
    path = os.environ.get(STATS_ENV, "")
    if not path:
        _die(CoordinationError(f"{STATS_ENV} is not set; run the tests through condcov"))
    persistence = ImmediatePersistence() if immediate else BatchPersistence()
    registry = Registry(path, persistence=persistence, first_time=first_time, fatal=_die)
    try:
        registry.load()
    except CoordinationError as e:
        _die(e)
    if at_exit:
        atexit.register(registry.flush)
    return registry


def attach(
    conditions: Iterable[tuple[str, str]],
    *,
    first_time: bool = False,
    immediate: bool = False,
) -> FileRecorder:
    global _registry
    with _lock:
        if _registry is None:
            _registry = bootstrap(first_time=first_time, immediate=immediate)
        registry = _registry
    return FileRecorder(registry, registry.register(conditions))
