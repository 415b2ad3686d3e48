"""Durable sync checkpoint.

``SyncState`` is what a run needs to resume; ``StateStore`` is the
persistence seam. ``JsonStateStore`` keeps it in ``{root}/.sync-state.json``;
other backends only need ``load`` and ``save``.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .errors import WriteError
from .models import parse_day, parse_timestamp
from .reporter import Reporter

MAX_FAILED_ATTEMPTS = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


@dataclass
class FailedAttempt:
    timestamp: datetime
    target: str     # cursor or YYYY-MM-DD the failing request was for
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "target": self.target, "error": self.error}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailedAttempt":
        return cls(parse_timestamp(data["timestamp"]), str(data.get("target", "")), str(data.get("error", "")))


@dataclass
class SyncState:
    last_sync_time: Optional[datetime] = None
    last_cursor: Optional[str] = None
    cursor_floor: Optional[date] = None
    resume_date: Optional[date] = None
    last_complete_time: Optional[datetime] = None
    empty_days: Set[date] = field(default_factory=set)
    failed_attempts: List[FailedAttempt] = field(default_factory=list)

    def mark_empty(self, day: date):
        self.empty_days.add(day)

    def mark_non_empty(self, day: date):
        self.empty_days.discard(day)

    def record_failure(self, target: str, error: str, when: Optional[datetime] = None):
        self.failed_attempts.append(FailedAttempt(when or utcnow(), target, error))
        del self.failed_attempts[:-MAX_FAILED_ATTEMPTS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastSyncTime": _iso(self.last_sync_time),
            "lastCursor": self.last_cursor,
            "cursorFloor": self.cursor_floor.isoformat() if self.cursor_floor else None,
            "resumeDate": self.resume_date.isoformat() if self.resume_date else None,
            "lastCompleteTime": _iso(self.last_complete_time),
            "emptyDays": sorted(d.isoformat() for d in self.empty_days),
            "failedAttempts": [f.to_dict() for f in self.failed_attempts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncState":
        def ts(key):
            return parse_timestamp(data[key]) if data.get(key) else None
        return cls(
            last_sync_time=ts("lastSyncTime"),
            last_cursor=data.get("lastCursor") or None,
            cursor_floor=parse_day(data["cursorFloor"]) if data.get("cursorFloor") else None,
            resume_date=parse_day(data["resumeDate"]) if data.get("resumeDate") else None,
            last_complete_time=ts("lastCompleteTime"),
            empty_days={parse_day(d) for d in data.get("emptyDays") or []},
            failed_attempts=[FailedAttempt.from_dict(f) for f in data.get("failedAttempts") or []],
        )


class StateStore(ABC):
    @abstractmethod
    def load(self) -> SyncState:
        """Return the persisted state, or a default one. Never raises."""

    @abstractmethod
    def save(self, state: SyncState) -> None:
        """Persist ``state``. Raises WriteError when it cannot."""


class MemoryStateStore(StateStore):
    """Keeps the state in memory; ``saves`` counts successful saves."""

    def __init__(self, state: Optional[SyncState] = None):
        self._state = copy.deepcopy(state) if state else SyncState()
        self.saves = 0

    def load(self) -> SyncState:
        return copy.deepcopy(self._state)

    def save(self, state: SyncState) -> None:
        self._state = copy.deepcopy(state)
        self.saves += 1


def atomic_write_text(path: Path, text: str):
    """Write ``text`` to ``path`` via a temp file and rename, so readers never see a partial file."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class JsonStateStore(StateStore):
    def __init__(self, path: Path, reporter: Optional[Reporter] = None):
        self.path = Path(path)
        self.reporter = reporter or Reporter()

    def load(self) -> SyncState:
        if not self.path.exists():
            self.reporter.debug(f"[State] no state file at {self.path}; starting fresh")
            return SyncState()
        try:
            return SyncState.from_dict(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self.reporter.warning(f"ignoring unreadable state file {self.path}: {e}")
            return SyncState()

    def save(self, state: SyncState) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self.path, json.dumps(state.to_dict(), indent=2) + "\n")
        except OSError as e:
            raise WriteError(self.path, str(e)) from e
        self.reporter.debug(f"[State] saved {self.path}")
