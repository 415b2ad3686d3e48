"""The two ways a sync run walks the remote log.

A strategy turns a ``WalkState`` into one ``Batch`` per request:

* ``CursorStrategy`` (incremental runs) pages newest-first through
  ``nextCursor`` and stops at the lower bound.
* ``PerDateStrategy`` (full resync) asks for one UTC date at a time, newest
  first, and gives up after a run of consecutive empty dates.

Strategies only fetch. Merging, checkpointing and the delay between requests
belong to the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import AbstractSet, List, Optional

from .client import ApiClient, FetchParams
from .config import EMPTY_DAY_THRESHOLD, PAGE_LIMIT, RECHECK_DAYS
from .models import LifelogRecord


@dataclass(frozen=True)
class WalkState:
    cursor: Optional[str] = None
    day: Optional[date] = None
    empty_streak: int = 0


@dataclass
class Batch:
    records: List[LifelogRecord]
    new_state: WalkState
    done: bool
    target: str
    day: Optional[date] = None      # date the batch was scoped to (per-date only)
    day_empty: bool = False         # ``day`` is confirmed to have no records
    requested: bool = True          # False when the batch was answered without a request
    notes: List[str] = field(default_factory=list)


class PaginationStrategy(ABC):
    def __init__(self, client: ApiClient, batch_size: int = PAGE_LIMIT,
                 include_markdown: bool = True, include_headings: bool = True):
        self.client = client
        self.batch_size = batch_size
        self.include_markdown = include_markdown
        self.include_headings = include_headings

    def _params(self, **kw) -> FetchParams:
        return FetchParams(limit=self.batch_size, direction="desc",
                           include_markdown=self.include_markdown,
                           include_headings=self.include_headings, **kw)

    @abstractmethod
    def initial_state(self) -> WalkState:
        pass

    @abstractmethod
    def describe(self, state: WalkState) -> str:
        """What the next request for ``state`` targets, for failure records."""

    @abstractmethod
    def next_batch(self, state: WalkState) -> Batch:
        pass


class CursorStrategy(PaginationStrategy):
    def __init__(self, client: ApiClient, lower_bound: date, start_cursor: Optional[str] = None, **kw):
        super().__init__(client, **kw)
        self.lower_bound = lower_bound
        self.start_cursor = start_cursor

    def initial_state(self) -> WalkState:
        return WalkState(cursor=self.start_cursor)

    def describe(self, state: WalkState) -> str:
        return f"cursor {state.cursor}" if state.cursor else "cursor <newest>"

    def next_batch(self, state: WalkState) -> Batch:
        page = self.client.fetch_page(self._params(cursor=state.cursor))
        records = page.records
        new_state = WalkState(cursor=page.next_cursor)
        notes = []
        if not records:
            notes.append("empty page")
        elif len(records) < self.batch_size:
            notes.append("short page")
        elif not page.next_cursor:
            notes.append("no next cursor")
        elif min(r.date for r in records) <= self.lower_bound:
            notes.append(f"reached {self.lower_bound}")
        return Batch(records=records, new_state=new_state, done=bool(notes),
                     target=self.describe(state), notes=notes)


class PerDateStrategy(PaginationStrategy):
    """Walk dates downward from ``upper``.

    ``lower_bound`` is an optional hard floor. ``arm_below`` is the date under
    which empty dates start counting toward ``empty_day_threshold``: above
    it the archive already proves older history exists. ``known_empty``
    dates more than ``recheck_days`` before ``upper`` are not requested again.
    """

    def __init__(self, client: ApiClient, upper: date, lower_bound: Optional[date] = None,
                 arm_below: Optional[date] = None,
                 empty_day_threshold: int = EMPTY_DAY_THRESHOLD,
                 known_empty: AbstractSet[date] = frozenset(),
                 recheck_days: int = RECHECK_DAYS, start_day: Optional[date] = None, **kw):
        super().__init__(client, **kw)
        self.upper = upper
        self.lower_bound = lower_bound
        self.arm_below = arm_below
        self.empty_day_threshold = max(1, empty_day_threshold)
        self.known_empty = frozenset(known_empty)
        self.recheck_days = recheck_days
        self.start_day = start_day or upper

    def initial_state(self) -> WalkState:
        return WalkState(day=self.start_day)

    def describe(self, state: WalkState) -> str:
        return state.day.isoformat()

    def _armed(self, day: date) -> bool:
        return self.arm_below is None or day < self.arm_below

    def _skippable(self, day: date) -> bool:
        return day in self.known_empty and day < self.upper - timedelta(days=self.recheck_days)

    def _finish_day(self, state: WalkState, had_records: bool):
        day = state.day
        if had_records:
            streak = 0
        elif self._armed(day):
            streak = state.empty_streak + 1
        else:
            streak = state.empty_streak
        nxt = day - timedelta(days=1)
        notes = []
        if streak >= self.empty_day_threshold:
            notes.append(f"{streak} consecutive empty days")
        elif self.lower_bound is not None and nxt < self.lower_bound:
            notes.append(f"reached {self.lower_bound}")
        return WalkState(day=nxt, empty_streak=streak), notes

    def next_batch(self, state: WalkState) -> Batch:
        day = state.day
        if state.cursor is None and self._skippable(day):
            new_state, notes = self._finish_day(state, False)
            return Batch(records=[], new_state=new_state, done=bool(notes), target=self.describe(state),
                         day=day, day_empty=True, requested=False, notes=notes)

        page = self.client.fetch_page(self._params(cursor=state.cursor, date=day))
        records = page.records
        more = bool(records) and len(records) >= self.batch_size and bool(page.next_cursor)
        if more:
            # Same date, next page; the date already has data.
            new_state = replace(state, cursor=page.next_cursor)
            return Batch(records=records, new_state=new_state, done=False,
                         target=self.describe(state), day=day)
        had_records = bool(records) or state.cursor is not None
        new_state, notes = self._finish_day(state, had_records)
        return Batch(records=records, new_state=new_state, done=bool(notes), target=self.describe(state),
                     day=day, day_empty=not had_records, notes=notes)
