"""Scratch workspace of one run and the argument it mirrors.

The workspace is a private temporary directory::

    condcov-<random>/
        src/                    mirror of the argument below its search root
        condcov-counts.json     default stats file

The search root of an argument is the directory its modules are imported
from: the nearest ancestor that is not a regular package. Mirroring the
argument at the same relative place under ``src/`` lets ``src/`` stand in
for the search root on ``PYTHONPATH``.
"""

from __future__ import annotations

import dataclasses
import os
import posixpath
import shutil
import sys
import tempfile

from condcov._errors import UsageError, WorkspaceError
from condcov._stats import DEFAULT_STATS_NAME
from condcov._util import verbose


@dataclasses.dataclass(frozen=True)
class Argument:
    # as given on the command line, forward slashes
    arg_name: str
    abs_path: str
    search_root: str
    # relative to the search root, forward slashes; "." for the root itself
    tmp_name: str
    is_dir: bool

    def base(self) -> str | None:
        """File name for a single-file argument, None for a directory."""
        if self.is_dir:
            return None
        return posixpath.basename(self.arg_name)

    def src_dir(self) -> str:
        return self.abs_path if self.is_dir else os.path.dirname(self.abs_path)

    def tmp_dir(self) -> str:
        """Where the argument's directory goes, relative to the workspace's src/."""
        if self.is_dir:
            return self.tmp_name
        return posixpath.dirname(self.tmp_name) or "."

    def display_dir(self) -> str:
        if self.is_dir:
            return self.arg_name
        return posixpath.dirname(self.arg_name) or "."


def find_search_root(directory: str) -> str:
    root = os.path.abspath(directory)
    while os.path.isfile(os.path.join(root, "__init__.py")):
        parent = os.path.dirname(root)
        if parent == root:
            break
        root = parent
    return root


def resolve_argument(arg: str) -> Argument:
    if not os.path.exists(arg):
        raise UsageError(f"{arg}: no such file or directory")
    abs_path = os.path.abspath(arg)
    is_dir = os.path.isdir(abs_path)
    if not is_dir and not abs_path.endswith(".py"):
        raise UsageError(f"{arg}: not a directory or Python source file")
    root = find_search_root(abs_path if is_dir else os.path.dirname(abs_path))
    tmp_name = os.path.relpath(abs_path, root).replace(os.sep, "/")
    arg_name = posixpath.normpath(arg.replace(os.sep, "/"))
    return Argument(arg_name, abs_path, root, tmp_name, is_dir)


def _ignore(directory: str, names: list[str]) -> set[str]:
    ignored = set()
    for name in names:
        if name.startswith(".") or name == "__pycache__" or name.endswith(".pyc"):
            ignored.add(name)
        elif os.path.isfile(os.path.join(directory, name, "pyvenv.cfg")):
            ignored.add(name)
    return ignored


class Workspace:
    """Owns the temporary directory; :meth:`release` removes it unless kept."""

    def __init__(self, path: str, *, keep: bool = False) -> None:
        self.path = path
        self.keep = keep
        self.released = False

    @classmethod
    def create(cls, *, keep: bool = False) -> Workspace:
        try:
            path = tempfile.mkdtemp(prefix="condcov-")
        except OSError as e:
            raise WorkspaceError(f"cannot create temporary directory: {e.strerror or e}") from e
        verbose(f"The temporary working directory is {path}")
        return cls(path, keep=keep)

    @property
    def src(self) -> str:
        return os.path.join(self.path, "src")

    def file_src(self, rel: str) -> str:
        """Absolute path of ``rel`` (forward slashes) below src/."""
        return os.path.normpath(os.path.join(self.src, *rel.split("/")))

    def default_stats_path(self) -> str:
        return os.path.join(self.path, DEFAULT_STATS_NAME)

    def import_roots(self) -> list[str]:
        roots = [self.src]
        nested = os.path.join(self.src, "src")
        if os.path.isdir(nested):
            roots.append(nested)
        return roots

    def copy_argument(self, arg: Argument) -> str:
        """Copy the argument's directory and its enclosing package markers."""
        dst = self.file_src(arg.tmp_dir())
        try:
            shutil.copytree(arg.src_dir(), dst, ignore=_ignore, dirs_exist_ok=True)
            parent = os.path.dirname(arg.src_dir())
            while parent != arg.search_root and parent.startswith(arg.search_root):
                init = os.path.join(parent, "__init__.py")
                rel = os.path.relpath(parent, arg.search_root).replace(os.sep, "/")
                shutil.copy2(init, os.path.join(self.file_src(rel), "__init__.py"))
                parent = os.path.dirname(parent)
        except (OSError, shutil.Error) as e:
            raise WorkspaceError(f"cannot copy {arg.arg_name} to {dst}: {e}") from e
        verbose(f"Copied {arg.arg_name} to {dst}")
        return dst

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self.keep:
            print(f"\nthe temporary files are in {self.path}", file=sys.stderr)
            return
        try:
            shutil.rmtree(self.path)
        except OSError as e:
            verbose(f"cannot remove {self.path}: {e}")

    def __enter__(self) -> Workspace:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
