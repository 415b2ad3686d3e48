"""Progress and diagnostic output.

Progress lines go to stderr unless ``quiet``; diagnostic lines only when
``verbose``. Components receive a Reporter instead of printing directly so
callers (and tests) can swap the sink.
"""

from __future__ import annotations

import sys
from typing import List, Optional, TextIO, Tuple


class Reporter:
    def __init__(self, verbose: bool = False, quiet: bool = False, stream: Optional[TextIO] = None):
        self.verbose = verbose
        self.quiet = quiet
        self.stream = stream

    def _write(self, msg: str):
        print(msg, file=self.stream or sys.stderr)

    def progress(self, msg: str):
        if not self.quiet:
            self._write(msg)

    def debug(self, msg: str):
        if self.verbose:
            self._write(msg)

    def warning(self, msg: str):
        self._write(f"Warning: {msg}")

    def error(self, msg: str):
        self._write(f"Error: {msg}")


class RecordingReporter(Reporter):
    """Keeps every message in ``messages`` as ``(level, text)`` pairs."""

    def __init__(self):
        super().__init__(verbose=True)
        self.messages: List[Tuple[str, str]] = []

    def progress(self, msg: str):
        self.messages.append(("progress", msg))

    def debug(self, msg: str):
        self.messages.append(("debug", msg))

    def warning(self, msg: str):
        self.messages.append(("warning", msg))

    def error(self, msg: str):
        self.messages.append(("error", msg))

    def lines(self, level: str) -> List[str]:
        return [m for lvl, m in self.messages if lvl == level]
