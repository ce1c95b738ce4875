"""Counter table of the instrumented process.

A :class:`Registry` maps each decision point identity ``(Start, Code)`` to a
:class:`CounterRecord` and persists the table to the stats file. One lock
guards the table, the first-time diagnostics and the immediate flush, so
concurrent test threads neither lose updates nor expose a half-written file.

When the table is written is decided by a persistence policy:

- :class:`BatchPersistence` writes nothing per record; the owner flushes
  once at interpreter exit
- :class:`ImmediatePersistence` flushes after every record, so counts
  survive a process that ends through ``os._exit``
"""

from __future__ import annotations

import itertools
import os
import sys
import threading
from collections.abc import Callable, Iterable
from typing import IO, Protocol

from condcov._errors import CoordinationError
from condcov._stats import Condition, dump_stats, load_stats
from condcov._util import quote

FatalHandler = Callable[[CoordinationError], None]


class CounterRecord:
    """Outcome counts of one decision point."""

    __slots__ = ("code", "false_count", "seq", "start", "true_count")

    def __init__(self, start: str, code: str, seq: int) -> None:
        self.start = start
        self.code = code
        self.seq = seq
        self.true_count = 0
        self.false_count = 0

    @property
    def total(self) -> int:
        return self.true_count + self.false_count

    def sort_key(self) -> tuple[str, int, int, int]:
        path, _, rest = self.start.rpartition(":")
        path, _, line = path.rpartition(":")
        try:
            return path, int(line), int(rest), self.seq
        except ValueError:
            return self.start, 0, 0, self.seq

    def to_condition(self) -> Condition:
        return Condition(self.start, self.code, self.true_count, self.false_count)

    def __repr__(self) -> str:
        return f"CounterRecord({self.start} {self.code!r}: {self.true_count}/{self.false_count})"


class Persistence(Protocol):
    def after_record(self, write: Callable[[], None]) -> None: ...


class BatchPersistence:
    """Keep counts in memory; the owner of the registry flushes at exit."""

    def after_record(self, write: Callable[[], None]) -> None:
        pass


class ImmediatePersistence:
    """Write the stats file after every single record."""

    def after_record(self, write: Callable[[], None]) -> None:
        write()


class Registry:
    def __init__(
        self,
        stats_path: str,
        *,
        persistence: Persistence | None = None,
        first_time: bool = False,
        err: IO[str] | None = None,
        fatal: FatalHandler | None = None,
    ) -> None:
        self.stats_path = stats_path
        self.persistence: Persistence = persistence or BatchPersistence()
        self.first_time = first_time
        self._err = err
        self._fatal = fatal
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], CounterRecord] = {}
        self._seq = itertools.count()

    def _get(self, start: str, code: str) -> CounterRecord:
        rec = self._records.get((start, code))
        if rec is None:
            rec = CounterRecord(start, code, next(self._seq))
            self._records[(start, code)] = rec
        return rec

    def load(self) -> int:
        """Seed the table from an existing stats file; returns the number of records read.

        A missing file is an empty table. A file that cannot be parsed
        raises :class:`CoordinationError`.
        """
        if not os.path.exists(self.stats_path):
            return 0
        conditions = load_stats(self.stats_path)
        with self._lock:
            for c in conditions:
                rec = self._get(c.start, c.code)
                rec.true_count = c.true_count
                rec.false_count = c.false_count
        return len(conditions)

    def register(self, conditions: Iterable[tuple[str, str]]) -> list[CounterRecord]:
        with self._lock:
            return [self._get(start, code) for start, code in conditions]

    def record(self, rec: CounterRecord, outcome: bool) -> bool:
        """Count one evaluation of ``rec``; returns ``outcome`` unchanged."""
        with self._lock:
            first = rec.total == 0
            if outcome:
                rec.true_count += 1
            else:
                rec.false_count += 1
            if first and self.first_time:
                err = self._err or sys.stderr
                err.write(f"{rec.start}: condition {quote(rec.code)} is {str(outcome).lower()} for the first time\n")
                err.flush()
            self.persistence.after_record(self._write_locked)
        return outcome

    def counts(self, start: str, code: str) -> tuple[int, int] | None:
        with self._lock:
            rec = self._records.get((start, code))
            return None if rec is None else (rec.true_count, rec.false_count)

    def conditions(self) -> list[Condition]:
        """Snapshot of the table, ordered by file, line, column, then registration."""
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> list[Condition]:
        return [r.to_condition() for r in sorted(self._records.values(), key=CounterRecord.sort_key)]

    def flush(self) -> None:
        with self._lock:
            self._write_locked()

    def _write_locked(self) -> None:
        try:
            dump_stats(self.stats_path, self._snapshot_locked())
        except CoordinationError as e:
            if self._fatal is None:
                raise
            self._fatal(e)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
