"""
Per-run job state.

One JobRunState per triggered run; a new run replaces it wholesale.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional

from hyperexecute_tracker.job_link import JobLink


class JobStage(str, Enum):
    """Where a run is, each stage implying the ones before it."""

    NOT_TRIGGERED = "not_triggered"
    TRIGGERED = "triggered"
    ERROR_CLEARED = "error_cleared"
    UPLOAD_STARTED = "upload_started"
    UPLOAD_DONE = "upload_done"
    SERVER_CONNECTED = "server_connected"
    LINK_FOUND = "link_found"
    TERMINATED_WITHOUT_LINK = "terminated_without_link"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.LINK_FOUND, JobStage.TERMINATED_WITHOUT_LINK)


@dataclass
class JobRunState:
    """Milestone flags of a single run. Flags only ever go False -> True."""

    triggered: bool = False
    error_cleared: bool = False
    upload_started: bool = False
    upload_done: bool = False
    server_connected: bool = False
    job_link_found: bool = False
    terminated_without_link: bool = False
    cached_link: Optional[JobLink] = None

    def __setattr__(self, name: str, value) -> None:
        if name in FLAG_FIELDS and not value and getattr(self, name, False):
            raise ValueError(f"Milestone flag '{name}' cannot be cleared within a run")
        super().__setattr__(name, value)

    @property
    def stage(self) -> JobStage:
        if self.job_link_found:
            return JobStage.LINK_FOUND
        if self.terminated_without_link:
            return JobStage.TERMINATED_WITHOUT_LINK
        for flag, stage in reversed(FLAG_STAGES):
            if getattr(self, flag):
                return stage
        return JobStage.NOT_TRIGGERED

    def flags(self) -> dict[str, bool]:
        return {name: getattr(self, name) for name in FLAG_FIELDS}


FLAG_STAGES: list[tuple[str, JobStage]] = [
    ("triggered", JobStage.TRIGGERED),
    ("error_cleared", JobStage.ERROR_CLEARED),
    ("upload_started", JobStage.UPLOAD_STARTED),
    ("upload_done", JobStage.UPLOAD_DONE),
    ("server_connected", JobStage.SERVER_CONNECTED),
]

FLAG_FIELDS = frozenset(
    f.name for f in fields(JobRunState) if f.name != "cached_link"
)
