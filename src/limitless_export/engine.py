"""Incremental sync engine.

A run goes CHECKING_FRONTIER -> SYNCING -> COMPLETE or FAILED:

1. Load the checkpoint and work out the window: an upper bound (today, or
   the day before the remote's newest record when ``safe_upper_bound`` is
   set) and a lower bound (the newest date already archived, else a
   lookback window). An incremental run whose last completion already covers
   the upper bound stops here without fetching anything.
2. Walk the remote with a PaginationStrategy. After every batch the records
   are merged into their date buckets, *then* the checkpoint is saved, then
   the engine waits ``request_delay`` before the next request. A crash
   between merge and save costs one redundant, idempotent re-merge.
3. A fetch, protocol or archive write error appends to ``failed_attempts``,
   saves the checkpoint and re-raises. Everything merged so far stays.
"""

from __future__ import annotations

import time as _time_module
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional

from .archive import ArchiveWriter
from .client import ApiClient
from .config import (
    EMPTY_DAY_THRESHOLD, LOOKBACK_DAYS, PAGE_LIMIT, RECHECK_DAYS, REQUEST_DELAY,
)
from .errors import FetchError, ProtocolError, WriteError
from .models import group_by_date
from .reporter import Reporter
from .state import StateStore, SyncState, utcnow
from .strategies import Batch, CursorStrategy, PaginationStrategy, PerDateStrategy


class SyncStatus(Enum):
    CHECKING_FRONTIER = "checking_frontier"
    SYNCING = "syncing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class SyncConfig:
    full: bool = False
    batch_size: int = PAGE_LIMIT
    lookback_days: int = LOOKBACK_DAYS
    empty_day_threshold: int = EMPTY_DAY_THRESHOLD
    recheck_days: int = RECHECK_DAYS
    request_delay: float = REQUEST_DELAY
    safe_upper_bound: bool = False
    earliest: Optional[date] = None
    include_markdown: bool = True
    include_headings: bool = True


@dataclass
class Frontier:
    upper: date
    lower: Optional[date] = None
    arm_below: Optional[date] = None
    resume_cursor: Optional[str] = None
    resume_date: Optional[date] = None
    up_to_date: bool = False
    requests: int = 0
    reason: str = ""


@dataclass
class BatchOutcome:
    target: str
    fetched: int
    dates: List[date] = field(default_factory=list)
    state_error: Optional[WriteError] = None


@dataclass
class SyncOutcome:
    status: SyncStatus = SyncStatus.CHECKING_FRONTIER
    frontier: Optional[Frontier] = None
    batches: List[BatchOutcome] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def total_records(self) -> int:
        return sum(b.fetched for b in self.batches)

    @property
    def dates_written(self) -> List[date]:
        return sorted({d for b in self.batches for d in b.dates})

    @property
    def state_errors(self) -> List[WriteError]:
        return [b.state_error for b in self.batches if b.state_error is not None]


def _end_of(day: date) -> datetime:
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)


def _describe_error(e: Exception) -> str:
    if isinstance(e, FetchError) and e.status is not None:
        return f"{type(e).__name__}: {e} (status {e.status})"
    return f"{type(e).__name__}: {e}"


class SyncEngine:
    def __init__(self, client: ApiClient, archive: ArchiveWriter, store: StateStore,
                 config: Optional[SyncConfig] = None, reporter: Optional[Reporter] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.client = client
        self.archive = archive
        self.store = store
        self.config = config or SyncConfig()
        self.reporter = reporter or Reporter()
        self.sleep = sleep or _time_module.sleep
        self.clock = clock or utcnow

    # ── Frontier ────────────────────────────────────────────────────────────
    def check_frontier(self, state: SyncState) -> Frontier:
        cfg = self.config
        today = self.clock().date()
        frontier = Frontier(upper=today)

        if cfg.safe_upper_bound:
            latest = self.client.peek("desc")
            frontier.requests += 1
            if latest is None:
                frontier.up_to_date = True
                frontier.reason = "remote has no lifelogs"
                return frontier
            frontier.upper = min(latest.date - timedelta(days=1), today)

        # Full resyncs are never short-circuited.
        if (not cfg.full and state.last_complete_time is not None
                and state.last_complete_time >= _end_of(frontier.upper)):
            frontier.up_to_date = True
            frontier.reason = f"last complete sync ({state.last_complete_time:%Y-%m-%d %H:%M}) covers {frontier.upper}"
            return frontier

        if cfg.full:
            frontier.lower = cfg.earliest
            frontier.arm_below = self.archive.earliest_date()
            if state.resume_date is not None and state.resume_date <= frontier.upper:
                frontier.resume_date = state.resume_date
        elif state.last_cursor:
            frontier.resume_cursor = state.last_cursor
            frontier.lower = state.cursor_floor or self._incremental_floor(today)
        else:
            frontier.lower = self._incremental_floor(today)
        return frontier

    def _incremental_floor(self, today: date) -> date:
        floor = self.archive.latest_date() or today - timedelta(days=self.config.lookback_days)
        if self.config.earliest is not None:
            floor = max(floor, self.config.earliest)
        return floor

    def build_strategy(self, frontier: Frontier, state: SyncState) -> PaginationStrategy:
        cfg = self.config
        common = dict(batch_size=cfg.batch_size, include_markdown=cfg.include_markdown,
                      include_headings=cfg.include_headings)
        if cfg.full:
            return PerDateStrategy(self.client, upper=frontier.upper, lower_bound=frontier.lower,
                                   arm_below=frontier.arm_below,
                                   empty_day_threshold=cfg.empty_day_threshold,
                                   known_empty=state.empty_days, recheck_days=cfg.recheck_days,
                                   start_day=frontier.resume_date, **common)
        return CursorStrategy(self.client, lower_bound=frontier.lower,
                              start_cursor=frontier.resume_cursor, **common)

    # ── Checkpointing ───────────────────────────────────────────────────────
    def _checkpoint(self, state: SyncState) -> Optional[WriteError]:
        """Persist ``state``. A failure is reported and returned, not raised."""
        try:
            self.store.save(state)
        except WriteError as e:
            self.reporter.warning(f"could not save sync state ({e}); the next run may repeat work")
            return e
        return None

    def _apply(self, batch: Batch, state: SyncState, strategy: PaginationStrategy) -> BatchOutcome:
        groups = group_by_date(batch.records)
        for day in sorted(groups):
            self.archive.merge(day, groups[day])
            state.mark_non_empty(day)
        if batch.day is not None and batch.day_empty:
            state.mark_empty(batch.day)

        state.last_sync_time = self.clock()
        if isinstance(strategy, CursorStrategy):
            state.last_cursor = batch.new_state.cursor
            state.cursor_floor = strategy.lower_bound if batch.new_state.cursor else None
        elif isinstance(strategy, PerDateStrategy):
            walk = batch.new_state
            state.resume_date = walk.day if walk.cursor is None else batch.day
        outcome = BatchOutcome(target=batch.target, fetched=len(batch.records), dates=sorted(groups))
        outcome.state_error = self._checkpoint(state)
        self._report(batch, outcome)
        return outcome

    def _report(self, batch: Batch, outcome: BatchOutcome):
        if not batch.requested:
            self.reporter.debug(f"Skipping {batch.day} (known to be empty)")
        elif batch.day is not None and not batch.records:
            self.reporter.progress(f"{batch.day}: no lifelogs")
        elif batch.records:
            days = outcome.dates
            span = f"{days[0]}" if len(days) == 1 else f"{days[0]} to {days[-1]}"
            self.reporter.progress(f"Fetched {len(batch.records)} lifelogs ({span})")
        else:
            self.reporter.progress("Fetched 0 lifelogs")
        for note in batch.notes:
            self.reporter.debug(f"Stopping: {note}")

    # ── Run ─────────────────────────────────────────────────────────────────
    def _fail(self, outcome: SyncOutcome, state: SyncState, target: str, e: Exception) -> SyncOutcome:
        outcome.status = SyncStatus.FAILED
        outcome.error = e
        state.record_failure(target, _describe_error(e), when=self.clock())
        self._checkpoint(state)
        self.reporter.error(f"sync failed at {target}: {e}")
        return outcome

    def run(self) -> SyncOutcome:
        """Run one sync. Raises the fatal error after recording it; see SyncOutcome for progress."""
        outcome = self.sync()
        if outcome.status is SyncStatus.FAILED:
            raise outcome.error
        return outcome

    def sync(self) -> SyncOutcome:
        """Run one sync and return its outcome; a FAILED outcome carries the error."""
        started = self.clock()
        state = self.store.load()
        outcome = SyncOutcome()

        try:
            frontier = self.check_frontier(state)
        except (FetchError, ProtocolError) as e:
            return self._fail(outcome, state, "frontier", e)
        outcome.frontier = frontier
        if frontier.up_to_date:
            self.reporter.progress(f"Already up to date: {frontier.reason}")
            outcome.status = SyncStatus.COMPLETE
            return outcome

        strategy = self.build_strategy(frontier, state)
        outcome.status = SyncStatus.SYNCING
        if frontier.resume_cursor:
            self.reporter.progress(f"Resuming interrupted sync (down to {frontier.lower})")
        elif frontier.resume_date:
            self.reporter.progress(f"Resuming full resync at {frontier.resume_date}")
        elif self.config.full:
            self.reporter.progress(f"Full resync from {frontier.upper} backwards")
        else:
            self.reporter.progress(f"Syncing lifelogs back to {frontier.lower}")

        if frontier.requests:
            self.sleep(self.config.request_delay)
        walk = strategy.initial_state()
        while True:
            target = strategy.describe(walk)
            try:
                batch = strategy.next_batch(walk)
                outcome.batches.append(self._apply(batch, state, strategy))
            except (FetchError, ProtocolError, WriteError) as e:
                return self._fail(outcome, state, target, e)
            walk = batch.new_state
            if batch.done:
                break
            if batch.requested:
                self.sleep(self.config.request_delay)

        state.last_cursor = None
        state.cursor_floor = None
        state.resume_date = None
        state.last_complete_time = started
        save_error = self._checkpoint(state)
        if save_error is not None and outcome.batches:
            outcome.batches[-1].state_error = outcome.batches[-1].state_error or save_error
        outcome.status = SyncStatus.COMPLETE
        self.reporter.progress(f"Sync complete: {outcome.total_records} lifelogs across "
                               f"{len(outcome.dates_written)} dates")
        return outcome
