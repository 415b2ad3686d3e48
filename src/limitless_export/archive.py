"""Per-date archive files and their idempotent merge.

Every merge reloads the stored bucket, unions it with the new records,
deduplicates by id and rewrites the whole file. Merging the same records
again, or the same records split differently across batches, converges on
the same bucket, which is what lets a run restart from a stale checkpoint.

Two renderers exist:

* ``JsonRenderer`` writes ``{root}/YYYY-MM-DD.json``, a pretty-printed array
  of the records as the API returned them. That file is also the store the
  next merge reads back.
* ``MarkdownRenderer`` writes ``{root}/YYYY-MM-DD.md`` for reading. Markdown
  is never parsed back, so the record set behind it is kept in
  ``{root}/.records/YYYY-MM-DD.json``.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import WriteError
from .models import ContentItem, LifelogRecord, parse_timestamp
from .reporter import Reporter
from .state import atomic_write_text

DATE_STEM = re.compile(r"^\d{4}-\d{2}-\d{2}$")
UNKNOWN_SPEAKER = "Unknown"
RECORD_STORE_DIR = ".records"


def merge_records(existing: Iterable[LifelogRecord], new: Iterable[LifelogRecord]) -> List[LifelogRecord]:
    """Union two record sets: one record per id (last seen wins), ordered by start time then id."""
    by_id: Dict[str, LifelogRecord] = {}
    for rec in list(existing) + list(new):
        by_id[rec.id] = rec
    return sorted(by_id.values(), key=LifelogRecord.sort_key)


class Renderer(ABC):
    extension: str = ""

    @abstractmethod
    def render(self, records: List[LifelogRecord]) -> str:
        pass


class JsonRenderer(Renderer):
    extension = "json"

    def render(self, records: List[LifelogRecord]) -> str:
        return json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False) + "\n"


def _clock(ts: Optional[str]) -> Optional[str]:
    if not ts:
        return None
    try:
        return datetime.fromisoformat(ts.replace("Z", "+00:00")).strftime("%H:%M:%S")
    except ValueError:
        return None


class MarkdownRenderer(Renderer):
    extension = "md"

    def render_item(self, item: ContentItem) -> str:
        text = (item.content or "").strip()
        if not text:
            return ""
        level = item.heading_level
        if level:
            return f"{'#' * level} {text}"
        if item.is_quote:
            speaker = item.speaker_name or UNKNOWN_SPEAKER
            when = _clock(item.start_time)
            attribution = f"{speaker} ({when})" if when else speaker
            return f"> {attribution}: {text}"
        return text

    def render_record(self, record: LifelogRecord) -> str:
        if record.contents is None:
            return (record.markdown or "").strip()
        blocks = [self.render_item(item) for item in record.contents]
        return "\n\n".join(b for b in blocks if b)

    def render(self, records: List[LifelogRecord]) -> str:
        blocks = [self.render_record(r) for r in records]
        text = "\n\n".join(b for b in blocks if b)
        return text + "\n" if text else ""


RENDERERS = {"json": JsonRenderer, "md": MarkdownRenderer}


class ArchiveWriter:
    def __init__(self, root: Path, renderer: Optional[Renderer] = None, reporter: Optional[Reporter] = None):
        self.root = Path(root)
        self.renderer = renderer or JsonRenderer()
        self.reporter = reporter or Reporter()

    def _log(self, msg: str):
        self.reporter.debug(f"[Archive] {msg}")

    @property
    def _store_dir(self) -> Path:
        if isinstance(self.renderer, JsonRenderer):
            return self.root
        return self.root / RECORD_STORE_DIR

    def output_path(self, day: date) -> Path:
        return self.root / f"{day.isoformat()}.{self.renderer.extension}"

    def store_path(self, day: date) -> Path:
        return self._store_dir / f"{day.isoformat()}.json"

    def load(self, day: date) -> List[LifelogRecord]:
        """Records stored for ``day``. A missing or unparsable bucket is empty."""
        path = self.store_path(day)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, list):
                raise ValueError("bucket is not a JSON array")
            records = [LifelogRecord.from_dict(item) for item in data]
            for rec in records:
                parse_timestamp(rec.start_time)
            return records
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self.reporter.warning(f"treating unreadable bucket {path} as empty: {e}")
            return []

    def merge(self, day: date, records: List[LifelogRecord]) -> List[LifelogRecord]:
        """Merge ``records`` into the bucket for ``day`` and rewrite it.

        Returns the merged bucket. Nothing is written when both the stored
        bucket and ``records`` are empty. Raises WriteError if the file cannot
        be written.
        """
        stray = [r.id for r in records if r.date != day]
        if stray:
            raise ValueError(f"records {stray} do not start on {day}")
        existing = self.load(day)
        merged = merge_records(existing, records)
        if not merged:
            return merged
        targets = [(self.output_path(day), self.renderer.render(merged))]
        if self.store_path(day) != self.output_path(day):
            # Store first so the rendered view is never newer than its source.
            targets.insert(0, (self.store_path(day), JsonRenderer().render(merged)))
        for path, text in targets:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                atomic_write_text(path, text)
            except OSError as e:
                raise WriteError(path, str(e)) from e
        self._log(f"{day}: {len(existing)} stored + {len(records)} fetched -> {len(merged)} records")
        return merged

    def dates(self) -> List[date]:
        """Dates that have a bucket, ascending."""
        if not self._store_dir.is_dir():
            return []
        found = []
        for path in self._store_dir.glob("*.json"):
            if DATE_STEM.match(path.stem):
                try:
                    found.append(date.fromisoformat(path.stem))
                except ValueError:
                    continue
        return sorted(found)

    def latest_date(self) -> Optional[date]:
        found = self.dates()
        return found[-1] if found else None

    def earliest_date(self) -> Optional[date]:
        found = self.dates()
        return found[0] if found else None
