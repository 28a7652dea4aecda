"""
HyperExecute Job Tracker - infers cloud test job progress from CLI logs.

The HyperExecute CLI has no status API; this package launches it, watches
the log file it appends to, and turns known log lines into job milestones.
"""

from hyperexecute_tracker.config import (
    Credentials,
    LoggingConfig,
    MilestoneConfig,
    MilestonePredicate,
    TrackerConfig,
    load_config_from_pyproject,
)
from hyperexecute_tracker.log_reader import LogSnapshot, match, read_snapshot
from hyperexecute_tracker.watcher import (
    CancelToken,
    MilestoneResult,
    poll_milestone,
    watch,
)
from hyperexecute_tracker.error_race import (
    ERROR_REMEDIATION,
    ErrorKind,
    detect_first_error,
    error_candidates,
)
from hyperexecute_tracker.job_link import (
    NOT_FOUND,
    JobLink,
    extract_job_link,
    strip_ansi,
)
from hyperexecute_tracker.run_state import JobRunState, JobStage
from hyperexecute_tracker.tracker import (
    JobTracker,
    RunNotStartedError,
    StatusReport,
    TrackerError,
)
from hyperexecute_tracker.cli_setup import (
    download_cli,
    download_url,
    ensure_ignore_entries,
    find_cli,
)
from hyperexecute_tracker.logs import setup_logging

__all__ = [
    # Config
    "Credentials",
    "LoggingConfig",
    "MilestoneConfig",
    "MilestonePredicate",
    "TrackerConfig",
    "load_config_from_pyproject",
    # Log reading
    "LogSnapshot",
    "match",
    "read_snapshot",
    # Watching
    "CancelToken",
    "MilestoneResult",
    "poll_milestone",
    "watch",
    # Errors
    "ERROR_REMEDIATION",
    "ErrorKind",
    "detect_first_error",
    "error_candidates",
    # Job link
    "NOT_FOUND",
    "JobLink",
    "extract_job_link",
    "strip_ansi",
    # Tracker
    "JobRunState",
    "JobStage",
    "JobTracker",
    "RunNotStartedError",
    "StatusReport",
    "TrackerError",
    # Setup
    "download_cli",
    "download_url",
    "ensure_ignore_entries",
    "find_cli",
    "setup_logging",
]
