"""Lifelog records as returned by ``GET /v1/lifelogs``."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

API_DATE_FMT = "%Y-%m-%d"

HEADING_TYPES = {"heading1": 1, "heading2": 2, "heading3": 3}
QUOTE_TYPE = "blockquote"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    ``Z`` suffixes are accepted and naive values are taken to be UTC.
    """
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_day(s: str) -> date:
    return datetime.strptime(s, API_DATE_FMT).date()


@dataclass
class ContentItem:
    type: str
    content: str
    start_time: Optional[str] = None
    speaker_name: Optional[str] = None

    @property
    def heading_level(self) -> Optional[int]:
        return HEADING_TYPES.get(self.type)

    @property
    def is_quote(self) -> bool:
        return self.type == QUOTE_TYPE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentItem":
        return cls(
            type=data.get("type") or "",
            content=data.get("content") or "",
            start_time=data.get("startTime"),
            speaker_name=data.get("speakerName"),
        )


@dataclass
class LifelogRecord:
    """One conversational unit.

    ``raw`` keeps the dict exactly as the API sent it, so the structured
    archive round-trips fields this class does not model (title, markdown...).
    """

    id: str
    start_time: str
    end_time: Optional[str] = None
    contents: Optional[List[ContentItem]] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LifelogRecord":
        contents = data.get("contents")
        return cls(
            id=data["id"],
            start_time=data["startTime"],
            end_time=data.get("endTime"),
            contents=[ContentItem.from_dict(c) for c in contents] if contents is not None else None,
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.raw:
            return dict(self.raw)
        data: Dict[str, Any] = {"id": self.id, "startTime": self.start_time}
        if self.end_time is not None:
            data["endTime"] = self.end_time
        if self.contents is not None:
            data["contents"] = [
                {k: v for k, v in (("type", c.type), ("content", c.content),
                                   ("startTime", c.start_time), ("speakerName", c.speaker_name))
                 if v is not None}
                for c in self.contents
            ]
        return data

    @property
    def start(self) -> datetime:
        return parse_timestamp(self.start_time)

    @property
    def date(self) -> date:
        """UTC calendar date of ``start_time``: the bucketing key."""
        return self.start.date()

    @property
    def markdown(self) -> Optional[str]:
        return self.raw.get("markdown")

    def sort_key(self):
        return (self.start, self.id)


def group_by_date(records: List[LifelogRecord]) -> Dict[date, List[LifelogRecord]]:
    groups: Dict[date, List[LifelogRecord]] = {}
    for rec in records:
        groups.setdefault(rec.date, []).append(rec)
    return groups
