"""Remote Log Client: authenticated, retrying access to ``GET /v1/lifelogs``."""

from __future__ import annotations

import json
import time as _time_module
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import (
    API_BASE_URL, API_VERSION, BACKOFF_BASE, MAX_RETRIES, PAGE_LIMIT,
    RATE_LIMIT_COOLDOWN, REQUEST_TIMEOUT,
)
from .errors import FetchError, ProtocolError, RateLimited
from .models import LifelogRecord, parse_timestamp
from .reporter import Reporter


CONTENT_TEXT_FIELDS = ("type", "content", "startTime", "speakerName")


@dataclass
class FetchParams:
    limit: int = PAGE_LIMIT
    direction: str = "desc"
    cursor: Optional[str] = None
    date: Optional[date] = None
    include_markdown: bool = True
    include_headings: bool = True
    # Buckets are UTC dates, so the remote's date filter must be UTC as well.
    timezone: str = "UTC"

    def to_query(self) -> Dict[str, str]:
        params = {
            "limit": str(self.limit),
            "direction": self.direction,
            "includeMarkdown": "true" if self.include_markdown else "false",
            "includeHeadings": "true" if self.include_headings else "false",
            "timezone": self.timezone,
        }
        if self.cursor:
            params["cursor"] = self.cursor
        if self.date is not None:
            params["date"] = self.date.isoformat()
        return params


@dataclass
class Page:
    records: List[LifelogRecord]
    next_cursor: Optional[str]


def parse_lifelogs_response(body: Any) -> Page:
    """Validate a ``/v1/lifelogs`` body and turn it into a Page.

    Raises ProtocolError on any shape mismatch.
    """
    if not isinstance(body, dict):
        raise ProtocolError("response body is not a JSON object")
    data = body.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("lifelogs"), list):
        raise ProtocolError("response is missing data.lifelogs")
    records = []
    for i, item in enumerate(data["lifelogs"]):
        if not isinstance(item, dict):
            raise ProtocolError(f"data.lifelogs[{i}] is not an object")
        for key in ("id", "startTime"):
            if not isinstance(item.get(key), str) or not item[key]:
                raise ProtocolError(f"data.lifelogs[{i}] has no valid '{key}'")
        contents = item.get("contents")
        if contents is not None and not isinstance(contents, list):
            raise ProtocolError(f"data.lifelogs[{i}].contents is not a list")
        for j, node in enumerate(contents or []):
            if not isinstance(node, dict):
                raise ProtocolError(f"data.lifelogs[{i}].contents[{j}] is not an object")
            for key in CONTENT_TEXT_FIELDS:
                if node.get(key) is not None and not isinstance(node[key], str):
                    raise ProtocolError(f"data.lifelogs[{i}].contents[{j}].{key} is not a string")
        if item.get("markdown") is not None and not isinstance(item["markdown"], str):
            raise ProtocolError(f"data.lifelogs[{i}].markdown is not a string")
        try:
            parse_timestamp(item["startTime"])
            rec = LifelogRecord.from_dict(item)
        except (ValueError, TypeError, AttributeError) as e:
            raise ProtocolError(f"data.lifelogs[{i}] is malformed: {e}") from e
        records.append(rec)

    next_cursor = None
    meta = body.get("meta")
    if meta is not None:
        if not isinstance(meta, dict):
            raise ProtocolError("response meta is not an object")
        lifelogs_meta = meta.get("lifelogs")
        if lifelogs_meta is not None:
            if not isinstance(lifelogs_meta, dict):
                raise ProtocolError("response meta.lifelogs is not an object")
            next_cursor = lifelogs_meta.get("nextCursor")
            if next_cursor is not None and not isinstance(next_cursor, str):
                raise ProtocolError("meta.lifelogs.nextCursor is not a string")
    return Page(records=records, next_cursor=next_cursor or None)


def _error_payload(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text or None


def _retry_after(resp: requests.Response) -> Optional[float]:
    ra = resp.headers.get("Retry-After") if resp.headers else None
    if ra and str(ra).isdigit():
        return float(ra)
    return None


class ApiClient:
    def __init__(self, api_key: str, base_url: str = API_BASE_URL, *,
                 timeout: float = REQUEST_TIMEOUT,
                 max_retries: int = MAX_RETRIES,
                 backoff_base: float = BACKOFF_BASE,
                 rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN,
                 session: Optional[requests.Session] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 reporter: Optional[Reporter] = None):
        self.key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.rate_limit_cooldown = rate_limit_cooldown
        self.session = session or requests.Session()
        self.sleep = sleep or _time_module.sleep
        self.reporter = reporter or Reporter()

    def _log(self, msg: str):
        self.reporter.debug(f"[API] {msg}")

    def _send(self, url: str, headers: Dict[str, str], params: Dict[str, str]) -> Any:
        resp = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
        if resp.status_code == 429:
            raise RateLimited(_retry_after(resp))
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            if resp.status_code >= 500:
                raise
            # 4xx other than 429 will not get better by asking again.
            raise FetchError(f"HTTP {resp.status_code} from {url}", status=resp.status_code,
                             payload=_error_payload(resp)) from e
        try:
            return resp.json()
        except ValueError as e:
            raise ProtocolError(f"response from {url} is not valid JSON: {e}") from e

    def request(self, endpoint: str, params: Dict[str, str]) -> Any:
        """GET an endpoint, retrying transient failures.

        Network errors, timeouts and 5xx responses are retried up to
        ``max_retries`` attempts with exponential backoff. A 429 waits out the
        cooldown and repeats the same attempt; those waits are not counted.
        """
        url = f"{self.base_url}/{API_VERSION}/{endpoint.lstrip('/')}"
        headers = {"X-API-Key": self.key, "Accept": "application/json"}
        self._log(f"GET {url} params={params}")
        attempt = 1
        while True:
            try:
                return self._send(url, headers, params)
            except RateLimited as e:
                wait = max(self.rate_limit_cooldown, e.retry_after or 0)
                self.reporter.progress(f"Rate limited by the API; waiting {wait:g}s...")
                self.sleep(wait)
            except requests.RequestException as e:
                status = getattr(e.response, "status_code", None)
                if attempt >= self.max_retries:
                    payload = _error_payload(e.response) if e.response is not None else None
                    raise FetchError(f"request to {url} failed after {attempt} attempts: {e}",
                                     attempts=attempt, status=status, payload=payload) from e
                wait = self.backoff_base * 2 ** (attempt - 1)
                self._log(f"Attempt {attempt} failed (status {status}); retrying in {wait:g}s...")
                self.sleep(wait)
                attempt += 1
            except FetchError as e:
                e.attempts = attempt
                raise

    def fetch_page(self, params: FetchParams) -> Page:
        page = parse_lifelogs_response(self.request("lifelogs", params.to_query()))
        self._log(f"Fetched page: {len(page.records)} items, next cursor {page.next_cursor!r}")
        return page

    def peek(self, direction: str = "desc", include_markdown: bool = False,
             include_headings: bool = False) -> Optional[LifelogRecord]:
        """Return the remote's latest (``desc``) or earliest (``asc``) record, if any."""
        page = self.fetch_page(FetchParams(limit=1, direction=direction,
                                           include_markdown=include_markdown,
                                           include_headings=include_headings))
        return page.records[0] if page.records else None


def describe_fetch_error(e: FetchError) -> str:
    """Render a FetchError with the remote's error payload for display."""
    lines = [str(e)]
    if e.__cause__ is not None and str(e.__cause__) not in lines[0]:
        lines.append(f"cause: {e.__cause__}")
    if e.payload:
        if isinstance(e.payload, (dict, list)):
            lines.append(json.dumps(e.payload, indent=2))
        else:
            lines.append(str(e.payload))
    return "\n".join(lines)
