"""Tests for the source rewriter."""

from __future__ import annotations

import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from condcov._errors import InstrumentationError
from condcov._extract import InstrumentOptions
from condcov._rewrite import header_text, instrument_file, instrument_tree, iter_sources, rewrite_source
from helpers import counts_by_code, run_instrumented, run_original

HEADER_START = "import condcov._runtime as _condcov_rt; _condcov = _condcov_rt.attach("


# ---------------------------------------------------------------------------
# Rewritten text
# ---------------------------------------------------------------------------

class TestRewrittenText:
    def test_truth_context(self):
        result = rewrite_source("if a and b:\n    pass\n", "m.py")
        lines = result.text.split("\n")
        assert lines[0] == header_text(result.points, InstrumentOptions())
        assert lines[1] == "if _condcov.truth(0, _condcov.truth(1, a) and _condcov.truth(2, b)):"
        assert lines[2] == "    pass"

    def test_value_context_keeps_line(self):
        result = rewrite_source("x = a or b\n", "m.py")
        assert result.text.count("\n") == 1
        assert result.text.startswith(HEADER_START)
        assert result.text.endswith("; x = _condcov.value(0, a) or b\n")

    def test_header_follows_docstring_and_future_imports(self):
        src = '"""Doc."""\nfrom __future__ import annotations\n# note\nif x:\n    pass\n'
        lines = rewrite_source(src, "m.py").text.split("\n")
        assert lines[0] == '"""Doc."""'
        assert lines[1].startswith("from __future__ import annotations; " + HEADER_START)
        assert lines[2] == "# note"
        assert lines[3] == "if _condcov.truth(0, x):"

    def test_header_uses_leading_comment_line(self):
        lines = rewrite_source("# module comment\nif x:\n    pass\n", "m.py").text.split("\n")
        assert lines[0].startswith(HEADER_START)
        assert lines[0].endswith("  # module comment")
        assert lines[1] == "if _condcov.truth(0, x):"

    def test_header_keeps_shebang_and_cookie(self):
        src = "#!/usr/bin/env python\n# -*- coding: utf-8 -*-\ndef f(x):\n    return x or 1\n"
        lines = rewrite_source(src, "m.py").text.split("\n")
        assert lines[:2] == ["#!/usr/bin/env python", "# -*- coding: utf-8 -*-"]
        assert lines[2].startswith(HEADER_START)
        assert lines[3] == "def f(x):"

    def test_header_on_blank_line_after_shebang(self):
        src = "#!/usr/bin/env python\n\n@decorate\ndef f(x):\n    return x or 1\n"
        result = rewrite_source(src, "m.py")
        lines = result.text.split("\n")
        assert lines[1].startswith(HEADER_START)
        assert lines[2] == "@decorate"
        assert result.text.count("\n") == src.count("\n")

    def test_line_numbers_are_preserved(self):
        src = '"""Doc."""\n\ndef f(a, b):\n    if a or b:\n        raise ValueError(a)\n    return [x for x in b if x]\n'
        result = rewrite_source(src, "m.py")
        assert result.text.count("\n") == src.count("\n")
        for original, rewritten in zip(src.split("\n"), result.text.split("\n"), strict=True):
            assert rewritten.startswith(original[:4])

    def test_yield_is_parenthesized(self):
        result = rewrite_source("def g():\n    while (yield):\n        pass\n", "m.py")
        assert "    while (_condcov.truth(0, (yield))):" in result.text.split("\n")

    def test_multiline_condition(self):
        src = "if (a and\n        b):\n    pass\n"
        lines = rewrite_source(src, "m.py").text.split("\n")
        assert lines[1] == "if (_condcov.truth(0, _condcov.truth(1, a) and"
        assert lines[2] == "        _condcov.truth(2, b))):"

    def test_no_decision_points_leaves_source_alone(self):
        result = rewrite_source("x = 1\nprint(x)\n", "m.py")
        assert not result.changed
        assert result.text == "x = 1\nprint(x)\n"

    def test_header_carries_policy(self):
        opts = InstrumentOptions(first_time=True, immediate=True)
        result = rewrite_source("if x:\n    pass\n", "pkg/m.py", opts)
        assert "(('pkg/m.py:1:4', 'x'),)" in result.text
        assert "first_time=True, immediate=True)" in result.text


class TestRewriteErrors:
    @pytest.mark.parametrize("src", [
        "_condcov = 1\nif x:\n    pass\n",
        "import os as _condcov_rt\nif x:\n    pass\n",
        "def f(_condcov):\n    return _condcov or 1\n",
    ])
    def test_reserved_names(self, src):
        with pytest.raises(InstrumentationError, match="reserved name"):
            rewrite_source(src, "m.py")

    def test_syntax_error(self):
        with pytest.raises(InstrumentationError, match="cannot parse"):
            rewrite_source("if x\n    pass\n", "m.py")


# ---------------------------------------------------------------------------
# Behavior of instrumented code
# ---------------------------------------------------------------------------

BOTH_SRC = """
def both(a, b):
    if a and b:
        return True
    return False
"""

BEHAVIOR_SRC = """
log = []


def seen(name, value):
    log.append((name, value))
    return value


def decide(a, b, c):
    fallback = seen("fb", a) or c
    last = a and b and c
    if seen("a", a) and (seen("b", b) or seen("c", c)):
        r = "yes"
    elif not seen("na", a) or seen("nc", c):
        r = "maybe"
    else:
        r = "no"
    picked = seen("p1", a) or seen("p2", b) and seen("p3", c)
    kept = [x for x in (a, b, c) if seen("f", x)]
    label = "pos" if seen("t", a) else "neg"
    n = 0
    while seen("w", n < 2 and bool(b)):
        n += 1
    match (a, b):
        case (x, y) if seen("g", x) or seen("h", y):
            m = "guarded"
        case _:
            m = "other"
    return fallback, last, r, picked, kept, label, n, m
"""


class Ambiguous:
    """A value whose truth cannot be taken, like a multi-element array."""

    def __bool__(self):
        raise ValueError("truth value is ambiguous")

    def __repr__(self):
        return "Ambiguous()"


def _outcome(fn, *args):
    try:
        return "returned", fn(*args)
    except ValueError as e:
        return "raised", str(e)


_values = st.one_of(
    st.booleans(),
    st.integers(min_value=-2, max_value=2),
    st.none(),
    st.text(max_size=2),
    st.lists(st.integers(), max_size=2),
    st.builds(Ambiguous),
)


class TestInstrumentedBehavior:
    def test_short_circuit_counts(self, registry):
        ns, _ = run_instrumented(BOTH_SRC)
        assert ns["both"](False, True) is False
        assert counts_by_code(registry) == {"a and b": (0, 1), "a": (0, 1), "b": (0, 0)}
        assert ns["both"](True, True) is True
        assert counts_by_code(registry) == {"a and b": (1, 1), "a": (1, 1), "b": (1, 0)}

    def test_operand_values_are_returned_unchanged(self, registry):
        ns, _ = run_instrumented("def pick(x, d):\n    return x or d\n")
        assert ns["pick"]("", "dflt") == "dflt"
        assert ns["pick"](0, None) is None
        marker = [1]
        assert ns["pick"](marker, 2) is marker
        assert counts_by_code(registry) == {"x": (1, 2)}

    def test_untested_values_are_never_asked_for_truth(self, registry):
        src = """
        def pick(cached, load):
            return cached or load()


        def nested(a, b, c):
            return (a and b) or c
        """
        ns, _ = run_instrumented(src)
        fresh = Ambiguous()
        assert ns["pick"](None, lambda: fresh) is fresh
        assert ns["nested"](0, 1, fresh) is fresh
        assert ns["nested"](1, 0, fresh) is fresh
        assert counts_by_code(registry) == {"cached": (0, 1), "a and b": (0, 2), "a": (1, 1), "b": (0, 1)}

    def test_bool_is_called_once_in_truth_context(self, registry):
        class Flag:
            calls = 0

            def __init__(self, value):
                self.value = value

            def __bool__(self):
                Flag.calls += 1
                return self.value

        ns, _ = run_instrumented("def f(x, y):\n    if x and y:\n        return 1\n    return 0\n")
        assert ns["f"](Flag(True), Flag(False)) == 0
        assert Flag.calls == 2

    def test_exceptions_from_conditions_propagate(self, registry):
        ns, _ = run_instrumented("def f(x):\n    if 1 / x > 0:\n        return 1\n    return 0\n")
        with pytest.raises(ZeroDivisionError):
            ns["f"](0)
        assert counts_by_code(registry) == {"1 / x > 0": (0, 0)}

    def test_same_behavior_as_original(self, registry):
        instrumented, _ = run_instrumented(BEHAVIOR_SRC)
        original = run_original(BEHAVIOR_SRC)

        @settings(max_examples=200, deadline=None)
        @given(_values, _values, _values)
        def check(a, b, c):
            instrumented["log"].clear()
            original["log"].clear()
            assert _outcome(instrumented["decide"], a, b, c) == _outcome(original["decide"], a, b, c)
            assert instrumented["log"] == original["log"]

        check()

    def test_concurrent_evaluations_are_all_counted(self, registry):
        ns, _ = run_instrumented("def sign(x):\n    return 'pos' if x > 0 else 'neg'\n")

        def worker():
            for i in range(500):
                ns["sign"](1 if i % 2 else -1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counts_by_code(registry) == {"x > 0": (2000, 2000)}


# ---------------------------------------------------------------------------
# Files and trees
# ---------------------------------------------------------------------------

class TestInstrumentFiles:
    def test_keeps_source_encoding(self, tmp_path):
        path = tmp_path / "legacy.py"
        path.write_bytes("# -*- coding: latin-1 -*-\ns = 'caf\xe9' if ok else ''\n".encode("latin-1"))
        points = instrument_file(str(path), "legacy.py", "pkg", InstrumentOptions())
        assert [p.start for p in points] == ["pkg/legacy.py:2:15"]
        text = path.read_bytes().decode("latin-1")
        assert "'caf\xe9' if _condcov.truth(0, ok) else ''" in text

    def test_crlf_sources(self, tmp_path):
        path = tmp_path / "win.py"
        path.write_bytes(b"if a:\r\n    pass\r\n")
        points = instrument_file(str(path), "win.py", ".", InstrumentOptions())
        assert [p.start for p in points] == ["win.py:1:4"]
        assert b"\r" not in path.read_bytes()

    def test_tree(self, tmp_path):
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "__init__.py").write_text("")
        (tmp_path / "pkg" / "core.py").write_text("def f(x):\n    return x and 1\n")
        (tmp_path / "pkg" / "test_core.py").write_text("def test_f():\n    assert f(1) or True\n")
        (tmp_path / "pkg" / "__pycache__").mkdir()
        (tmp_path / "pkg" / "__pycache__" / "junk.py").write_text("if x:\n    pass\n")
        (tmp_path / "pkg" / "gen.py").write_text("# Code generated by tool. DO NOT EDIT.\nif x:\n    pass\n")

        assert [rel for _, rel in iter_sources(str(tmp_path))] == [
            "pkg/__init__.py", "pkg/core.py", "pkg/gen.py", "pkg/test_core.py",
        ]
        points = instrument_tree(str(tmp_path), "proj", InstrumentOptions())
        assert [p.start for p in points] == ["proj/pkg/core.py:2:12"]
        assert "_condcov" not in (tmp_path / "pkg" / "test_core.py").read_text()
        assert "_condcov" not in (tmp_path / "pkg" / "gen.py").read_text()

    def test_tree_with_tests(self, tmp_path):
        (tmp_path / "test_mod.py").write_text("def test_f():\n    assert 1 or 2\n")
        points = instrument_tree(str(tmp_path), ".", InstrumentOptions(cover_tests=True))
        assert [p.code for p in points] == ["1 or 2", "1", "2"]

    def test_only_one_file(self, tmp_path):
        (tmp_path / "a.py").write_text("if x:\n    pass\n")
        (tmp_path / "b.py").write_text("if y:\n    pass\n")
        points = instrument_tree(str(tmp_path), "src", InstrumentOptions(), only="b.py")
        assert [p.start for p in points] == ["src/b.py:1:4"]
        assert "_condcov" not in (tmp_path / "a.py").read_text()

    def test_parse_failure_aborts(self, tmp_path):
        (tmp_path / "broken.py").write_text("def f(:\n")
        with pytest.raises(InstrumentationError, match="broken.py"):
            instrument_tree(str(tmp_path), ".", InstrumentOptions())
