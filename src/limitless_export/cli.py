"""Command-line entry point: ``limitless-export [--full] [options]``."""

from __future__ import annotations

import argparse
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from . import __version__
from .archive import RENDERERS, ArchiveWriter
from .client import ApiClient, describe_fetch_error
from .config import (
    API_KEY_ENV_VAR, API_URL_ENV_VAR, EMPTY_DAY_THRESHOLD, LOOKBACK_DAYS,
    OUTPUT_DIR_ENV_VAR, PAGE_LIMIT, REQUEST_DELAY, Settings,
)
from .engine import SyncConfig, SyncEngine
from .errors import ConfigError, FetchError, LimitlessExportError
from .models import API_DATE_FMT
from .reporter import Reporter
from .state import JsonStateStore


def _date_arg(s: str) -> date:
    try:
        return datetime.strptime(s, API_DATE_FMT).date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{s}' (expected YYYY-MM-DD)")


def _batch_size_arg(s: str) -> int:
    n = int(s)
    if not 1 <= n <= PAGE_LIMIT:
        raise argparse.ArgumentTypeError(f"batch size must be between 1 and {PAGE_LIMIT}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="limitless-export",
        description="Export Limitless lifelogs into one file per UTC date, incrementally.",
        epilog=f"Reads {API_KEY_ENV_VAR} (required), {API_URL_ENV_VAR} and {OUTPUT_DIR_ENV_VAR} from the environment.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output for debugging.")
    parser.add_argument("--quiet", action="store_true", help="Suppress progress messages to stderr.")
    parser.add_argument("--full", action="store_true",
                        help="Full resync: walk backwards one date at a time instead of paging new lifelogs.")
    parser.add_argument("--format", choices=sorted(RENDERERS), default="json",
                        help="Archive format: json (structured) or md (readable markdown).")
    parser.add_argument("-o", "--output-dir", type=Path, help="Archive directory (default: data).")
    parser.add_argument("--lookback-days", type=int, default=LOOKBACK_DAYS,
                        help="How far back an incremental sync of an empty archive goes.")
    parser.add_argument("--empty-day-threshold", type=int, default=EMPTY_DAY_THRESHOLD,
                        help="Consecutive empty dates after which a full resync stops.")
    parser.add_argument("--batch-size", type=_batch_size_arg, default=PAGE_LIMIT,
                        help=f"Lifelogs per request (max {PAGE_LIMIT}).")
    parser.add_argument("--request-delay", type=float, default=REQUEST_DELAY,
                        help="Seconds to wait between requests.")
    parser.add_argument("--safe-upper-bound", action="store_true",
                        help="Only treat dates before the remote's newest lifelog as final.")
    parser.add_argument("--earliest", type=_date_arg, metavar="YYYY-MM-DD",
                        help="Never fetch dates before this one.")
    parser.add_argument("--include-markdown", action=argparse.BooleanOptionalAction, default=True,
                        help="Ask the API for each lifelog's markdown.")
    parser.add_argument("--include-headings", action=argparse.BooleanOptionalAction, default=True,
                        help="Ask the API for heading content items.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    reporter = Reporter(verbose=args.verbose, quiet=args.quiet)

    try:
        settings = Settings.from_env(output_dir=args.output_dir)
    except ConfigError as e:
        reporter.error(str(e))
        return 1

    client = ApiClient(settings.api_key, settings.api_url, reporter=reporter)
    archive = ArchiveWriter(settings.output_dir, RENDERERS[args.format](), reporter=reporter)
    store = JsonStateStore(settings.state_path, reporter=reporter)
    config = SyncConfig(
        full=args.full,
        batch_size=args.batch_size,
        lookback_days=args.lookback_days,
        empty_day_threshold=args.empty_day_threshold,
        request_delay=args.request_delay,
        safe_upper_bound=args.safe_upper_bound,
        earliest=args.earliest,
        include_markdown=args.include_markdown,
        include_headings=args.include_headings,
    )
    engine = SyncEngine(client, archive, store, config, reporter=reporter)

    reporter.progress(f"Exporting lifelogs to {settings.output_dir}/ ({args.format})")
    try:
        engine.run()
    except FetchError as e:
        print(describe_fetch_error(e), file=sys.stderr)
        return 1
    except LimitlessExportError as e:
        print(f"Export failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted; progress up to the last saved batch is kept.", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
