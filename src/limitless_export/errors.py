"""Error taxonomy for the exporter."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional


class LimitlessExportError(Exception):
    pass


class ConfigError(LimitlessExportError):
    """Required configuration is missing or invalid. Raised before any network activity."""


class ProtocolError(LimitlessExportError):
    """The remote answered with a body that does not match the lifelogs schema."""


class FetchError(LimitlessExportError):
    """A request failed for good: retries exhausted or a non-retryable status."""

    def __init__(self, message: str, attempts: int = 1, status: Optional[int] = None,
                 payload: Any = None):
        super().__init__(message)
        self.attempts = attempts
        self.status = status
        self.payload = payload


class RateLimited(LimitlessExportError):
    """HTTP 429. Handled inside ApiClient by cooling down; never reaches callers."""

    def __init__(self, retry_after: Optional[float] = None):
        super().__init__("rate limited")
        self.retry_after = retry_after


class WriteError(LimitlessExportError):
    def __init__(self, path: Path, reason: str):
        super().__init__(f"could not write {path}: {reason}")
        self.path = path
