"""Environment-sourced settings and defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError

# ── Constants ────────────────────────────────────────────────────────────────
API_BASE_URL        = "https://api.limitless.ai"
API_VERSION         = "v1"
API_KEY_ENV_VAR     = "LIMITLESS_API_KEY"
API_URL_ENV_VAR     = "LIMITLESS_API_URL"
OUTPUT_DIR_ENV_VAR  = "LIMITLESS_EXPORT_DIR"
DEFAULT_OUTPUT_DIR  = Path("data")
STATE_FILE_NAME     = ".sync-state.json"

PAGE_LIMIT          = 10     # the API rejects larger pages
REQUEST_TIMEOUT     = 30     # seconds, per request
MAX_RETRIES         = 3
BACKOFF_BASE        = 1.0    # seconds, doubled per attempt
RATE_LIMIT_COOLDOWN = 60.0   # seconds, must exceed the largest backoff wait
REQUEST_DELAY       = 1.0    # seconds between requests
LOOKBACK_DAYS       = 30
EMPTY_DAY_THRESHOLD = 10
RECHECK_DAYS        = 2


@dataclass
class Settings:
    api_key: str
    api_url: str = API_BASE_URL
    output_dir: Path = DEFAULT_OUTPUT_DIR

    @property
    def state_path(self) -> Path:
        return self.output_dir / STATE_FILE_NAME

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None,
                 output_dir: Optional[Path] = None) -> "Settings":
        env = os.environ if env is None else env
        key = (env.get(API_KEY_ENV_VAR) or "").strip()
        if not key:
            raise ConfigError(f"Missing {API_KEY_ENV_VAR}")
        url = (env.get(API_URL_ENV_VAR) or "").strip() or API_BASE_URL
        if output_dir is None:
            output_dir = Path(env[OUTPUT_DIR_ENV_VAR]).expanduser() if env.get(OUTPUT_DIR_ENV_VAR) else DEFAULT_OUTPUT_DIR
        return cls(api_key=key, api_url=url.rstrip("/"), output_dir=output_dir)
