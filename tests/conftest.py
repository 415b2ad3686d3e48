"""
Pytest configuration and shared fixtures.

``FakeRemote`` stands in for ApiClient: it serves a fixed set of lifelogs
newest-first with offset cursors, honours the ``date`` filter and records
every request so tests can assert on what was fetched.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import requests

from limitless_export.archive import ArchiveWriter, JsonRenderer, MarkdownRenderer
from limitless_export.client import FetchParams, Page
from limitless_export.errors import FetchError
from limitless_export.models import LifelogRecord
from limitless_export.reporter import RecordingReporter
from limitless_export.state import MemoryStateStore

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_record(record_id: str, start: str, contents: Optional[List[Dict[str, Any]]] = None,
                **extra) -> LifelogRecord:
    data = {
        "id": record_id,
        "title": f"Lifelog {record_id}",
        "startTime": start,
        "endTime": start,
        "contents": contents if contents is not None else [
            {"type": "heading1", "content": f"Lifelog {record_id}"},
        ],
    }
    data.update(extra)
    return LifelogRecord.from_dict(data)


def lifelogs_body(records: List[LifelogRecord], next_cursor: Optional[str] = None) -> Dict[str, Any]:
    return {
        "data": {"lifelogs": [r.to_dict() for r in records]},
        "meta": {"lifelogs": {"nextCursor": next_cursor, "count": len(records)}},
    }


def mock_response(status: int = 200, json_data: Any = None, headers: Optional[Dict[str, str]] = None,
                  text: str = ""):
    """Build a mock requests.Response whose raise_for_status behaves like the real one."""
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.text = text
    if json_data is None:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        resp.json.return_value = json_data
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Error", response=resp)
    else:
        resp.raise_for_status.return_value = None
    return resp


class FakeRemote:
    def __init__(self, records=(), fail_on: Optional[int] = None, error: Optional[Exception] = None):
        self.records: List[LifelogRecord] = list(records)
        self.calls: List[FetchParams] = []
        self.peeks = 0
        self.fail_on = fail_on
        self.error = error or FetchError("request failed after 3 attempts", attempts=3, status=503)

    def add(self, *records: LifelogRecord):
        self.records.extend(records)

    def _matching(self, direction: str, day: Optional[date] = None) -> List[LifelogRecord]:
        recs = [r for r in self.records if day is None or r.date == day]
        return sorted(recs, key=LifelogRecord.sort_key, reverse=direction == "desc")

    def fetch_page(self, params: FetchParams) -> Page:
        self.calls.append(params)
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise self.error
        recs = self._matching(params.direction, params.date)
        offset = int(params.cursor[1:]) if params.cursor else 0
        end = offset + params.limit
        return Page(records=recs[offset:end], next_cursor=f"c{end}" if end < len(recs) else None)

    def peek(self, direction: str = "desc", **kw) -> Optional[LifelogRecord]:
        self.peeks += 1
        recs = self._matching(direction)
        return recs[0] if recs else None

    @property
    def cursors(self) -> List[Optional[str]]:
        return [p.cursor for p in self.calls]

    @property
    def dates(self) -> List[Optional[date]]:
        return [p.date for p in self.calls]


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def archive_dir(tmp_path):
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def json_archive(archive_dir, reporter):
    return ArchiveWriter(archive_dir, JsonRenderer(), reporter=reporter)


@pytest.fixture
def md_archive(archive_dir, reporter):
    return ArchiveWriter(archive_dir, MarkdownRenderer(), reporter=reporter)


@pytest.fixture
def memory_store():
    return MemoryStateStore()


@pytest.fixture
def sleeps():
    """A list that collects every requested sleep; pass ``sleeps.append`` as ``sleep``."""
    return []


@pytest.fixture
def clock():
    return lambda: NOW
