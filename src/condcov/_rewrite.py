"""Rewrite Python source so that every decision point records its outcome.

The rewriter never touches the tree. It splices text into the original
source at the exact spans of the decision points, so each expression ``E``
is evaluated once, in its original place, and everything around it keeps
its formatting and its line numbers:

- ``_condcov.truth(i, E)`` where only the truthiness of ``E`` is used; it
  returns ``bool(E)``, which calls ``__bool__`` exactly once like the
  original test does
- ``_condcov.value(i, E)`` elsewhere; it returns ``E`` itself, so
  ``x or default`` still produces ``default``

``_condcov`` is bound by a header placed after the docstring and the
``__future__`` imports, on the same physical line whenever possible.
"""

from __future__ import annotations

import ast
import dataclasses
import io
import os
import re
import tokenize
from collections.abc import Iterator

from condcov._errors import InstrumentationError
from condcov._extract import (
    DecisionPoint,
    InstrumentOptions,
    _LineIndex,
    display_path,
    extract_decision_points,
    parse_source,
    should_instrument,
)
from condcov._util import verbose

RECORDER = "_condcov"
RUNTIME_ALIAS = "_condcov_rt"
_RESERVED: frozenset[str] = frozenset({RECORDER, RUNTIME_ALIAS})

_COOKIE_RE = re.compile(r"^[ \t\f]*#.*?coding[:=][ \t]*[-\w.]+")

_COMPOUND = (
    ast.If, ast.While, ast.For, ast.AsyncFor, ast.With, ast.AsyncWith, ast.Try,
    ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Match,
) + ((ast.TryStar,) if hasattr(ast, "TryStar") else ())

_SKIP_DIRS: frozenset[str] = frozenset({"__pycache__", "node_modules"})


@dataclasses.dataclass
class RewriteResult:
    text: str
    points: list[DecisionPoint]

    @property
    def changed(self) -> bool:
        return bool(self.points)


# ---------- header ----------

def _is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )


def _is_future_import(stmt: ast.stmt) -> bool:
    return isinstance(stmt, ast.ImportFrom) and stmt.module == "__future__"


def header_text(points: list[DecisionPoint], options: InstrumentOptions) -> str:
    table = tuple((p.start, p.code) for p in points)
    return (
        f"import condcov._runtime as {RUNTIME_ALIAS}; "
        f"{RECORDER} = {RUNTIME_ALIAS}.attach({table!r}, "
        f"first_time={options.first_time!r}, immediate={options.immediate!r})"
    )


def _header_edit(tree: ast.Module, index: _LineIndex, header: str) -> tuple[int, str]:
    """Find where the header goes; returns (offset, text to insert)."""
    body = tree.body
    last = None
    i = 0
    if body and _is_docstring(body[0]):
        last = body[0]
        i = 1
    while i < len(body) and _is_future_import(body[i]):
        last = body[i]
        i += 1
    if last is not None:
        end_lineno = last.end_lineno or last.lineno
        end_col = last.end_col_offset if last.end_col_offset is not None else 0
        return index.offset(end_lineno, end_col), "; " + header

    first = body[i]
    first_line = first.lineno
    if isinstance(first, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)) and first.decorator_list:
        first_line = min(d.lineno for d in first.decorator_list)
    for lineno in range(1, first_line):
        text = index.line(lineno)
        if lineno <= 2 and (text.startswith("#!") or _COOKIE_RE.match(text)):
            continue
        stripped = text.strip()
        if not stripped:
            return index.offset(lineno, 0), header
        if stripped.startswith("#"):
            return index.offset(lineno, 0), header + "  "
    if not isinstance(first, _COMPOUND):
        return index.offset(first.lineno, first.col_offset), header + "; "
    return index.offset(first_line, 0), header + "\n"


# ---------- rewriting ----------

def _identifiers(tree: ast.AST) -> set[str]:
    names: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name):
            names.add(node.id)
        elif isinstance(node, ast.arg):
            names.add(node.arg)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.add(node.name)
        elif isinstance(node, ast.alias):
            names.add(node.asname or node.name.split(".")[0])
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            names.update(node.names)
        elif isinstance(node, ast.ExceptHandler) and node.name:
            names.add(node.name)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
            names.add(node.name)
        elif isinstance(node, ast.MatchMapping) and node.rest:
            names.add(node.rest)
    return names


def _splice(source: str, edits: list[tuple[int, int, int, str]]) -> str:
    out: list[str] = []
    pos = 0
    for offset, _order, _tie, text in sorted(edits):
        out.append(source[pos:offset])
        out.append(text)
        pos = offset
    out.append(source[pos:])
    return "".join(out)


def rewrite_source(
    source: str,
    path: str,
    options: InstrumentOptions | None = None,
) -> RewriteResult:
    """Instrument one module's source text.

    ``path`` is the display path used in the decision points' ``Start``
    and in error messages. Sources without decision points come back
    unchanged.
    """
    options = options or InstrumentOptions()
    tree = parse_source(source, path)
    points = extract_decision_points(tree, source, path, options)
    if not points:
        return RewriteResult(source, [])

    clash = sorted(_identifiers(tree) & _RESERVED)
    if clash:
        raise InstrumentationError(f"{path}: uses the reserved name {clash[0]!r}")

    # Sort order at one offset: header, then closing parens (innermost
    # first), then opening calls (outermost first).
    edits: list[tuple[int, int, int, str]] = []
    for i, p in enumerate(points):
        begin, end = p.span
        method = "truth" if p.truth_only else "value"
        lparen, rparen = ("(", ")") if p.needs_parens else ("", "")
        edits.append((begin, 2, -end, f"{RECORDER}.{method}({i}, {lparen}"))
        edits.append((end, 1, -begin, f"{rparen})"))
    offset, text = _header_edit(tree, _LineIndex(source), header_text(points, options))
    edits.append((offset, 0, 0, text))

    result = _splice(source, edits)
    try:
        ast.parse(result, filename=path)
    except SyntaxError as e:
        raise InstrumentationError(
            f"{path}:{e.lineno}: cannot instrument without changing the program: {e.msg}"
        ) from e
    return RewriteResult(result, points)


# ---------- files ----------

def _read_source(filename: str) -> tuple[str, str]:
    """Decode a source file honoring its PEP 263 cookie; returns (text, encoding)."""
    try:
        with open(filename, "rb") as f:
            data = f.read()
    except OSError as e:
        raise InstrumentationError(f"cannot read {filename}: {e.strerror or e}") from e
    try:
        encoding, _ = tokenize.detect_encoding(io.BytesIO(data).readline)
        text = data.decode(encoding)
    except (SyntaxError, UnicodeDecodeError, LookupError) as e:
        raise InstrumentationError(f"{filename}: cannot decode source: {e}") from e
    return text.replace("\r\n", "\n").replace("\r", "\n"), encoding


def instrument_file(
    filename: str,
    rel_path: str,
    arg_name: str,
    options: InstrumentOptions,
) -> list[DecisionPoint]:
    """Rewrite ``filename`` in place; ``rel_path`` is its path below the argument."""
    source, encoding = _read_source(filename)
    if not should_instrument(rel_path, source, options):
        return []
    result = rewrite_source(source, display_path(arg_name, rel_path), options)
    if not result.changed:
        return []
    try:
        with open(filename, "w", encoding=encoding, newline="\n") as f:
            f.write(result.text)
    except OSError as e:
        raise InstrumentationError(f"cannot write {filename}: {e.strerror or e}") from e
    return result.points


def _is_venv(path: str) -> bool:
    return os.path.exists(os.path.join(path, "pyvenv.cfg"))


def iter_sources(directory: str) -> Iterator[tuple[str, str]]:
    """Yield the ``.py`` files below ``directory`` as (absolute, relative) paths, sorted."""
    for root, dirs, files in os.walk(directory):
        dirs[:] = sorted(
            d for d in dirs
            if not d.startswith(".") and d not in _SKIP_DIRS and not _is_venv(os.path.join(root, d))
        )
        for name in sorted(files):
            if name.endswith(".py"):
                full = os.path.join(root, name)
                yield full, os.path.relpath(full, directory).replace(os.sep, "/")


def instrument_tree(
    directory: str,
    arg_name: str,
    options: InstrumentOptions,
    *,
    only: str | None = None,
) -> list[DecisionPoint]:
    """Instrument the sources below ``directory`` in place.

    ``arg_name`` is the argument as the user gave it, used as the prefix of
    every display path. With ``only``, just that file (relative to
    ``directory``) is touched.
    """
    points: list[DecisionPoint] = []
    for full, rel in iter_sources(directory):
        if only is not None and rel != only:
            continue
        found = instrument_file(full, rel, arg_name, options)
        if found:
            verbose(f"Instrumented {display_path(arg_name, rel)}: {len(found)} conditions")
        points.extend(found)
    return points
