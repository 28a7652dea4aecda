"""
Polling Watcher

Re-reads the CLI log at a fixed interval until a milestone term shows up,
the budget runs out, or the owning run is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path

from hyperexecute_tracker.config import MilestonePredicate
from hyperexecute_tracker.log_reader import match

logger = logging.getLogger(__name__)


class MilestoneResult(str, Enum):
    """Outcome of one bounded watch."""

    FOUND = "found"
    TIMED_OUT = "timed_out"
    IO_FAILURE = "io_failure"  # timed out, and the last read attempt raised
    CANCELLED = "cancelled"


class CancelToken:
    """Cancellation flag shared by every watcher of one run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if cancelled meanwhile."""
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


async def poll_milestone(
    path: str | Path,
    predicate: MilestonePredicate,
    cancel: CancelToken | None = None,
) -> MilestoneResult:
    """Poll ``path`` for ``predicate.search_term``.

    The elapsed time is checked before each read, so the worst case is
    ``timeout_ms`` plus one interval. Read errors only mean "not found yet".
    """
    timeout = predicate.timeout_ms / 1000
    interval = predicate.interval_ms / 1000
    start = time.monotonic()
    last_error: OSError | None = None

    logger.debug(
        f"Waiting for log message '{predicate.search_term}' in {path} "
        f"(timeout {predicate.timeout_ms}ms, interval {predicate.interval_ms}ms)"
    )

    while True:
        if cancel is not None and cancel.cancelled:
            logger.debug(f"Watch for '{predicate.search_term}' cancelled")
            return MilestoneResult.CANCELLED

        if time.monotonic() - start > timeout:
            if last_error is not None:
                logger.warning(
                    f"Gave up on '{predicate.search_term}' after read errors: {last_error}"
                )
                return MilestoneResult.IO_FAILURE
            return MilestoneResult.TIMED_OUT

        try:
            found = match(path, predicate.search_term)
            last_error = None
        except OSError as e:
            # Likely a read racing the CLI's writes; try again next tick
            logger.debug(f"Error reading log file {path}: {e}")
            found = False
            last_error = e

        if found:
            logger.info(f"Found log message: '{predicate.search_term}'")
            return MilestoneResult.FOUND

        if cancel is not None:
            if await cancel.sleep(interval):
                logger.debug(f"Watch for '{predicate.search_term}' cancelled")
                return MilestoneResult.CANCELLED
        else:
            await asyncio.sleep(interval)


async def watch(
    path: str | Path,
    predicate: MilestonePredicate,
    cancel: CancelToken | None = None,
) -> bool:
    """True only if the milestone was found within its budget."""
    return await poll_milestone(path, predicate, cancel) is MilestoneResult.FOUND
