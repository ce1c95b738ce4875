"""pytest plugin owning the counter registry of an instrumented test run.

``condcov`` starts pytest with ``-p condcov._plugin``. The registry is built
in ``pytest_configure``, before test collection imports any instrumented
module, and written in ``pytest_unconfigure``.
"""

from __future__ import annotations

import pytest

from condcov import _runtime
from condcov._registry import Registry

_registry_key = pytest.StashKey[Registry]()


def pytest_addoption(parser):
    group = parser.getgroup("condcov", "condition coverage")
    group.addoption("--condcov-first-time", action="store_true", default=False,
                    help="print each condition when it is reached the first time")
    group.addoption("--condcov-immediately", action="store_true", default=False,
                    help="write the stats file after every recorded condition")


def pytest_configure(config):
    # A conftest.py that imports instrumented code has attached already.
    if _runtime.current() is not None:
        return
    registry = _runtime.bootstrap(
        first_time=config.getoption("condcov_first_time"),
        immediate=config.getoption("condcov_immediately"),
        at_exit=False,
    )
    _runtime.install(registry)
    config.stash[_registry_key] = registry


def pytest_unconfigure(config):
    registry = config.stash.get(_registry_key, None)
    if registry is not None:
        registry.flush()
