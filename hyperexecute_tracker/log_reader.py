"""
Log Snapshot Reader & Milestone Matcher

Reads the whole CLI log at one instant and answers case-insensitive
substring questions about it. The log is append-only free text; no attempt
is made to parse the JSON the CLI happens to emit per line.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class LogSnapshot:
    """Content of the log file at one read instant."""

    path: Path
    text: str
    read_at: float = field(default_factory=time.monotonic)

    def contains(self, term: str) -> bool:
        """Case-insensitive substring test."""
        return term.lower() in self.text.lower()


def read_snapshot(path: str | Path) -> LogSnapshot | None:
    """Read the full current content of the log.

    Returns None when the file does not exist yet. Other OS errors
    (permissions, a directory in the way) propagate to the caller.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None
    return LogSnapshot(path=path, text=text)


def match(path: str | Path, term: str) -> bool:
    """True if the log at ``path`` currently contains ``term``.

    A missing file means "not yet", never an error.
    """
    snapshot = read_snapshot(path)
    if snapshot is None:
        return False
    return snapshot.contains(term)
