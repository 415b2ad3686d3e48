"""Public API for limitless_export package."""

__version__ = "0.8.0"

from .archive import ArchiveWriter, JsonRenderer, MarkdownRenderer  # noqa: E402
from .client import ApiClient, FetchParams, Page  # noqa: E402
from .engine import SyncConfig, SyncEngine, SyncOutcome, SyncStatus  # noqa: E402
from .state import JsonStateStore, StateStore, SyncState  # noqa: E402
from .cli import main  # noqa: E402

__all__ = [
    "ApiClient", "ArchiveWriter", "FetchParams", "JsonRenderer", "JsonStateStore",
    "MarkdownRenderer", "Page", "StateStore", "SyncConfig", "SyncEngine",
    "SyncOutcome", "SyncState", "SyncStatus", "main",
]
