"""
Batch orchestrator.

Runs the combination search for many symbols on a bounded thread pool and
persists each winner:

    run_batch(symbols)
      ├── worker: load series → find_best_combination → store.upsert
      ├── worker: ...
      └── as each finishes: Progress.record(...)

One symbol's failure is logged and counted; it never aborts the batch.
Only one batch may run at a time per orchestrator (BatchAlreadyRunningError
otherwise), and cancel() stops symbols that have not started yet. Symbols
already running finish normally.

Progress is the only state shared between workers and the monitoring
side; every read and write goes through its lock.

Workers are threads. The search is pandas/numpy work that holds the GIL
for much of each sweep, so the pool overlaps I/O (series loads, store
writes) and numpy sections rather than scaling linearly with cores.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Sequence

from combo_forge.backtesting.combinations import (
    ComboResult,
    SearchConfig,
    find_best_combination,
    find_best_single,
)
from combo_forge.backtesting.optimizer import ParameterOptimizer
from combo_forge.backtesting.strategies import StrategyKind
from combo_forge.errors import BatchAlreadyRunningError
from combo_forge.services.result_store import ResultStore
from combo_forge.services.series_source import SeriesSource

log = logging.getLogger("forge.orchestrator")


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


class TaskOutcome(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time copy of a Progress handle."""
    total: int
    processed: int
    inserted: int
    updated: int
    skipped: int
    errors: int
    status: RunStatus
    last_symbol: str | None
    start_time: datetime | None
    end_time: datetime | None
    last_update: datetime | None

    @property
    def percent(self) -> float:
        return 100.0 * self.processed / self.total if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "processed": self.processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "status": self.status.value,
            "last_symbol": self.last_symbol,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "percent": round(self.percent, 1),
        }


class Progress:
    """Live counters of one batch run, safe to read from any thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reset(0, RunStatus.IDLE)
        self._start_time: datetime | None = None

    def _reset(self, total: int, status: RunStatus) -> None:
        self._total = total
        self._processed = 0
        self._inserted = 0
        self._updated = 0
        self._skipped = 0
        self._errors = 0
        self._status = status
        self._last_symbol: str | None = None
        self._end_time: datetime | None = None
        self._last_update: datetime | None = None

    def try_start(self, total: int) -> bool:
        """Reset and switch to running, unless a run is already in flight."""
        with self._lock:
            if self._status == RunStatus.RUNNING:
                return False
            self._reset(total, RunStatus.RUNNING)
            now = datetime.now(timezone.utc)
            self._start_time = now
            self._last_update = now
            return True

    def start(self, total: int) -> None:
        if not self.try_start(total):
            raise BatchAlreadyRunningError("a batch run is already in progress")

    def record(
        self,
        symbol: str,
        saved: bool = False,
        created: bool = False,
        failed: bool = False,
        skipped: bool = False,
    ) -> None:
        """Count one finished symbol task."""
        with self._lock:
            self._processed += 1
            if failed:
                self._errors += 1
            elif skipped:
                self._skipped += 1
            elif saved:
                if created:
                    self._inserted += 1
                else:
                    self._updated += 1
            self._last_symbol = symbol
            self._last_update = datetime.now(timezone.utc)

    def finish(self, status: RunStatus = RunStatus.DONE) -> None:
        with self._lock:
            self._status = status
            self._end_time = datetime.now(timezone.utc)
            self._last_update = self._end_time

    @property
    def status(self) -> RunStatus:
        with self._lock:
            return self._status

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                total=self._total,
                processed=self._processed,
                inserted=self._inserted,
                updated=self._updated,
                skipped=self._skipped,
                errors=self._errors,
                status=self._status,
                last_symbol=self._last_symbol,
                start_time=self._start_time,
                end_time=self._end_time,
                last_update=self._last_update,
            )


def default_workers() -> int:
    return max(2, os.cpu_count() or 1)


class BatchOrchestrator:
    """
    Combination search across many symbols.

    mandatory_entry / mandatory_exit force a kind into every subset on that
    side. With anchor_best_single, a side left unset is anchored on the
    symbol's best single entry/exit pair, found by a one-by-one search
    before the combination search.
    """

    def __init__(
        self,
        source: SeriesSource,
        store: ResultStore,
        config: SearchConfig | None = None,
        max_workers: int | None = None,
        insert_only: bool = False,
        max_bars: int = 1000,
        mandatory_entry: StrategyKind | None = None,
        mandatory_exit: StrategyKind | None = None,
        anchor_best_single: bool = False,
    ):
        self.source = source
        self.store = store
        self.config = config or SearchConfig()
        self.max_workers = max_workers or default_workers()
        self.insert_only = insert_only
        self.max_bars = max_bars
        for kind in (mandatory_entry, mandatory_exit):
            if kind is not None and kind not in self.config.universe:
                raise ValueError(f"mandatory strategy {kind.value} is not in the search universe")
        self.mandatory_entry = mandatory_entry
        self.mandatory_exit = mandatory_exit
        self.anchor_best_single = anchor_best_single
        self.progress = Progress()
        self._cancel = threading.Event()

    # ── Single symbol ──

    def find_best_combination(self, symbol: str) -> ComboResult:
        """Search one symbol synchronously. Errors propagate; nothing is persisted."""
        series = self.source.load_series(symbol, self.max_bars)
        optimizer = ParameterOptimizer(self.config.simulation, self.config.search_spaces)
        mandatory_entry, mandatory_exit = self.mandatory_entry, self.mandatory_exit

        if self.anchor_best_single and (mandatory_entry is None or mandatory_exit is None):
            single = find_best_single(series, self.config, optimizer)
            if single is None:
                log.warning("%s: no single strategy ran a fold, searching without anchor", symbol)
            else:
                mandatory_entry = mandatory_entry or single[0]
                mandatory_exit = mandatory_exit or single[1]
                log.info("%s: anchoring on in=%s out=%s", symbol, mandatory_entry.value, mandatory_exit.value)

        return find_best_combination(series, self.config, mandatory_entry, mandatory_exit, optimizer)

    # ── Batch ──

    def run_batch(self, symbols: Sequence[str]) -> ProgressSnapshot:
        """
        Search and persist every symbol, blocking until all tasks finish.

        Raises BatchAlreadyRunningError if another run_batch is in flight.
        Returns the final progress snapshot.
        """
        symbols = list(dict.fromkeys(symbols))
        self.progress.start(len(symbols))
        self._cancel.clear()
        total = len(symbols)
        log.info("Batch started: %d symbols on %d workers%s",
                 total, self.max_workers, " (insert-only)" if self.insert_only else "")

        try:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="forge") as executor:
                future_to_symbol = {executor.submit(self._run_symbol, s): s for s in symbols}

                for future in as_completed(future_to_symbol):
                    symbol = future_to_symbol[future]
                    try:
                        outcome, created = future.result()
                    except Exception:
                        log.exception("%s: combination search failed", symbol)
                        self.progress.record(symbol, failed=True)
                        continue

                    if outcome == TaskOutcome.SAVED:
                        self.progress.record(symbol, saved=True, created=created)
                    else:
                        self.progress.record(symbol, skipped=True)
                    snap = self.progress.snapshot()
                    log.info("[%d/%d] %s: %s", snap.processed, total, symbol, outcome.value)
        finally:
            status = RunStatus.CANCELLED if self._cancel.is_set() else RunStatus.DONE
            self.progress.finish(status)

        snap = self.progress.snapshot()
        log.info(
            "Batch %s: %d processed, %d inserted, %d updated, %d skipped, %d errors",
            snap.status.value, snap.processed, snap.inserted, snap.updated, snap.skipped, snap.errors,
        )
        return snap

    def _run_symbol(self, symbol: str) -> tuple[TaskOutcome, bool]:
        if self._cancel.is_set():
            return TaskOutcome.CANCELLED, False
        if self.insert_only and self.store.exists(symbol):
            log.warning("%s: result already stored, skipping (insert-only)", symbol)
            return TaskOutcome.SKIPPED, False

        combo = self.find_best_combination(symbol)
        created = self.store.upsert(symbol, combo)
        return TaskOutcome.SAVED, created

    def cancel(self) -> None:
        """Stop symbols that have not started. Running ones complete."""
        if self.progress.status == RunStatus.RUNNING:
            log.warning("Batch cancellation requested")
        self._cancel.set()

    def get_progress(self) -> ProgressSnapshot:
        return self.progress.snapshot()
