"""Locate the boolean decision points of a Python module.

A decision point is an expression whose truth value steers the program:

- the test of ``if``/``elif`` and ``while``
- the test of a conditional expression ``a if TEST else b``
- each filter of a comprehension ``[x for x in xs if TEST]``
- the guard of a ``match`` case ``case p if TEST:``
- every ``and``/``or`` expression, as a whole and operand by operand,
  wherever the interpreter takes its truth value

Decomposition of boolean expressions follows the tree: ``if a and b and c:``
is a single ``BoolOp`` and yields four points (the whole plus three
operands), while ``if (a and b) or c:`` yields the outer expression, the
inner expression (which is an operand at the same time), ``a``, ``b`` and
``c``. When the value of a boolean expression is used, as in
``x = a or b``, the interpreter only tests the operands that can short
circuit, so only ``a`` is a point there.

Identity is purely syntactic, so constant tests such as ``while True`` are
tracked like any other.
"""

from __future__ import annotations

import ast
import dataclasses
import posixpath
import re
from collections.abc import Iterator

from condcov._errors import InstrumentationError

DEFAULT_EXCLUDE = r"#\s*pragma:\s*no\s*(?:cover|branch)\b"

_GENERATED_RE = re.compile(r"^\s*#.*\b(?:auto-?)?generated\b.*\bdo not edit\b", re.IGNORECASE)

_TEST_DIRS: frozenset[str] = frozenset({"test", "tests", "testing"})


@dataclasses.dataclass
class InstrumentOptions:
    cover_tests: bool = False
    cover_generated: bool = False
    exclude_pattern: str = DEFAULT_EXCLUDE
    # Registry policy, baked into the header of every rewritten file.
    first_time: bool = False
    immediate: bool = False


@dataclasses.dataclass(frozen=True)
class DecisionPoint:
    path: str
    line: int
    column: int
    code: str
    kind: str
    truth_only: bool
    span: tuple[int, int]  # character offsets into the source text
    needs_parens: bool = False

    @property
    def start(self) -> str:
        return f"{self.path}:{self.line}:{self.column}"

    @property
    def key(self) -> tuple[str, str]:
        return self.start, self.code


class _LineIndex:
    """Maps ast positions (1-based line, UTF-8 byte column) to text offsets."""

    def __init__(self, source: str) -> None:
        self._lines = source.split("\n")
        self._starts: list[int] = []
        pos = 0
        for line in self._lines:
            self._starts.append(pos)
            pos += len(line) + 1

    def column(self, lineno: int, col_offset: int) -> int:
        line = self._lines[lineno - 1]
        if line.isascii():
            return col_offset
        return len(line.encode("utf-8")[:col_offset].decode("utf-8"))

    def offset(self, lineno: int, col_offset: int) -> int:
        return self._starts[lineno - 1] + self.column(lineno, col_offset)

    def line(self, lineno: int) -> str:
        return self._lines[lineno - 1]


def is_test_file(rel_path: str) -> bool:
    """Whether the file at ``rel_path`` (forward slashes) is test-only code."""
    parts = rel_path.split("/")
    name = parts[-1]
    if name == "conftest.py" or name.startswith("test_") or name.endswith("_test.py"):
        return True
    return any(p in _TEST_DIRS for p in parts[:-1])


def is_generated(source: str) -> bool:
    """Whether the leading comment block marks the file as generated."""
    for line in source.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if not stripped.startswith("#"):
            return False
        if _GENERATED_RE.match(stripped):
            return True
    return False


def should_instrument(rel_path: str, source: str, options: InstrumentOptions) -> bool:
    if not options.cover_tests and is_test_file(rel_path):
        return False
    if not options.cover_generated and is_generated(source):
        return False
    return True


def parse_source(source: str, filename: str) -> ast.Module:
    try:
        return ast.parse(source, filename=filename)
    except SyntaxError as e:
        raise InstrumentationError(f"{filename}:{e.lineno}: cannot parse: {e.msg}") from e
    except ValueError as e:
        raise InstrumentationError(f"{filename}: cannot parse: {e}") from e


class _Extractor(ast.NodeVisitor):
    def __init__(self, source: str, path: str, exclude: re.Pattern[str]) -> None:
        self._index = _LineIndex(source)
        self._path = path
        self._exclude = exclude
        self._seen: set[int] = set()
        self.points: list[DecisionPoint] = []

    # ---------- statements ----------

    def visit(self, node: ast.AST) -> None:
        if isinstance(node, ast.stmt) and self._exclude.search(self._index.line(node.lineno)):
            return
        if isinstance(node, ast.expr):
            self._expr(node, truth=False)
            return
        super().visit(node)

    def visit_If(self, node: ast.If) -> None:
        self._condition(node.test, "if")
        self._visit_all(node.body)
        self._visit_all(node.orelse)

    def visit_While(self, node: ast.While) -> None:
        self._condition(node.test, "while")
        self._visit_all(node.body)
        self._visit_all(node.orelse)

    def visit_Match(self, node: ast.Match) -> None:
        self._expr(node.subject, truth=False)
        for case in node.cases:
            if case.guard is not None:
                self._condition(case.guard, "match-guard")
            self._visit_all(case.body)

    # Annotations are skipped: with postponed evaluation they never run.

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        for deco in node.decorator_list:
            self._expr(deco, truth=False)
        self.visit(node.args)
        self._visit_all(node.body)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_arg(self, node: ast.arg) -> None:
        pass

    def visit_Assert(self, node: ast.Assert) -> None:
        self._expr(node.test, truth=False, tested=True)
        if node.msg is not None:
            self._expr(node.msg, truth=False)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        self._expr(node.target, truth=False)
        if node.value is not None:
            self._expr(node.value, truth=False)

    def _visit_all(self, nodes: list[ast.stmt]) -> None:
        for n in nodes:
            self.visit(n)

    # ---------- expressions ----------

    def _condition(self, node: ast.expr, kind: str) -> None:
        self._add(node, kind, truth=True)
        self._expr(node, truth=True)

    def _expr(self, node: ast.expr, *, truth: bool, tested: bool = False) -> None:
        """Walk an expression.

        ``truth`` tells whether only its truthiness is used. ``tested`` tells
        whether the interpreter takes its truth value although the value
        itself is used, as for the left operand of ``x or default``. A
        boolean expression or operand that is neither is not a decision
        point: nothing branches on it, and asking for its truth could raise
        where the program never does.
        """
        if isinstance(node, ast.JoinedStr):
            return
        if isinstance(node, ast.BoolOp):
            if truth or tested:
                self._add(node, "boolop", truth=truth)
            last = len(node.values) - 1
            for i, value in enumerate(node.values):
                value_tested = tested or i < last
                if truth or value_tested:
                    self._add(value, "operand", truth=truth)
                self._expr(value, truth=truth, tested=value_tested)
            return
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
            self._expr(node.operand, truth=True)
            return
        if isinstance(node, ast.IfExp):
            self._condition(node.test, "ifexp")
            self._expr(node.body, truth=truth, tested=tested)
            self._expr(node.orelse, truth=truth, tested=tested)
            return
        if isinstance(node, ast.NamedExpr):
            self._expr(node.target, truth=False)
            self._expr(node.value, truth=False, tested=truth or tested)
            return
        if isinstance(node, (ast.ListComp, ast.SetComp, ast.GeneratorExp, ast.DictComp)):
            for gen in node.generators:
                self._expr(gen.iter, truth=False)
                self._expr(gen.target, truth=False)
                for cond in gen.ifs:
                    self._condition(cond, "comprehension")
            if isinstance(node, ast.DictComp):
                self._expr(node.key, truth=False)
                self._expr(node.value, truth=False)
            else:
                self._expr(node.elt, truth=False)
            return
        for child in _child_exprs(node):
            self._expr(child, truth=False)

    def _add(self, node: ast.expr, kind: str, *, truth: bool) -> None:
        if id(node) in self._seen:
            return
        self._seen.add(id(node))
        idx = self._index
        end_lineno = node.end_lineno or node.lineno
        end_col = node.end_col_offset if node.end_col_offset is not None else node.col_offset
        self.points.append(DecisionPoint(
            path=self._path,
            line=node.lineno,
            column=idx.column(node.lineno, node.col_offset) + 1,
            code=ast.unparse(node),
            kind=kind,
            truth_only=truth,
            span=(idx.offset(node.lineno, node.col_offset), idx.offset(end_lineno, end_col)),
            needs_parens=isinstance(node, (ast.Yield, ast.YieldFrom)),
        ))


def _child_exprs(node: ast.AST) -> Iterator[ast.expr]:
    """Yield the nearest expression descendants, looking through keywords and arguments."""
    for child in ast.iter_child_nodes(node):
        if isinstance(child, ast.expr):
            yield child
        else:
            yield from _child_exprs(child)


def extract_decision_points(
    tree: ast.Module,
    source: str,
    path: str,
    options: InstrumentOptions | None = None,
) -> list[DecisionPoint]:
    """Return the decision points of one parsed module, ordered by position.

    At equal start positions the enclosing expression comes first, so a
    boolean expression precedes its first operand.
    """
    options = options or InstrumentOptions()
    ex = _Extractor(source, path, re.compile(options.exclude_pattern))
    for stmt in tree.body:
        ex.visit(stmt)
    points = sorted(ex.points, key=lambda p: (p.span[0], -p.span[1]))

    seen: dict[tuple[str, str], DecisionPoint] = {}
    for p in points:
        if p.key in seen:
            raise InstrumentationError(f"{p.start}: duplicate decision point {p.code!r}")
        seen[p.key] = p
    return points


def display_path(arg_name: str, rel_path: str) -> str:
    """Join the argument as given with a path relative to it, forward slashes."""
    return posixpath.normpath(posixpath.join(arg_name.replace("\\", "/"), rel_path))
