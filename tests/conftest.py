"""Shared fixtures for condcov tests."""

from __future__ import annotations

import os

import pytest

from condcov import _runtime
from condcov._registry import Registry
from condcov._term import force_color
from condcov._util import set_verbose

EXAMPLES_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "examples"))


@pytest.fixture
def examples_dir() -> str:
    """Directory holding the subject projects used by end-to-end tests."""
    return EXAMPLES_DIR


@pytest.fixture
def stats_path(tmp_path) -> str:
    return str(tmp_path / "counts.json")


@pytest.fixture
def registry(stats_path):
    """A registry installed as the process registry for the duration of a test."""
    reg = Registry(stats_path)
    _runtime.install(reg)
    yield reg
    _runtime.uninstall()


@pytest.fixture(autouse=True)
def _reset_global_state():
    yield
    _runtime.uninstall()
    force_color(None)
    set_verbose(False)
