"""
Job Lifecycle Tracker

Step-wise state machine over the CLI log. ``run()`` launches the CLI and
``advance()`` moves the run forward by at most one stage per call; there is
no internal loop, so every call returns within a single watcher's budget
and the caller decides when to ask again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hyperexecute_tracker.config import Credentials, MilestonePredicate, TrackerConfig
from hyperexecute_tracker.error_race import (
    ERROR_REMEDIATION,
    ErrorKind,
    detect_first_error,
    error_candidates,
)
from hyperexecute_tracker.integrations.cli_launcher import Launcher, LaunchError, LaunchHandle
from hyperexecute_tracker.job_link import NOT_FOUND, JobLink, extract_job_link
from hyperexecute_tracker.log_reader import read_snapshot
from hyperexecute_tracker.run_state import JobRunState, JobStage
from hyperexecute_tracker.watcher import CancelToken, watch

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Base error for the job tracker."""

    pass


class RunNotStartedError(TrackerError):
    """advance() was called before any run()."""

    def __init__(self) -> None:
        super().__init__("Tests not started - Please run the tests in hyperexecute CLI.")


MSG_TRIGGERED = "CLI Job triggered successfully"
MSG_TRIGGERED_ON_ADVANCE = "CLI Job triggered successfully, lets check for the job link."
MSG_NOT_STARTED = (
    "Tests not started - the hyperexecute CLI has not picked up the job yet. "
    "Please run the tests in hyperexecute CLI again."
)
MSG_NO_ERRORS = "None of the errors are found, can proceed looking for the job link in cli logs."
MSG_STILL_RUNNING = "Job is still running, waiting for job link..."
MSG_TERMINATED = (
    "Job link is not generated, but test has been terminated. "
    "Kindly analyze your project manually & try again later!"
)
MSG_SUPERSEDED = "This run was replaced by a newer test run. Analyze the CLI run again for its status."
MSG_COULD_NOT_ANALYZE = (
    "Could not analyze the hyperexecute CLI run: {error}. "
    "Nothing was changed, you can safely check again."
)


def link_message(link: JobLink) -> str:
    return f"Job link is generated. Here is the job link: {link.url}"


@dataclass(frozen=True)
class ProgressStep:
    """One job progression milestone, awaited in order."""

    flag: str
    milestone: str  # attribute of MilestoneConfig
    message: str


PROGRESS_STEPS: list[ProgressStep] = [
    ProgressStep(
        "upload_started",
        "upload_started",
        "Uploading archives started. Please wait for the archives to be uploaded.",
    ),
    ProgressStep(
        "upload_done",
        "upload_done",
        "Uploading archives done. Let's wait for the server connection to be established.",
    ),
    ProgressStep(
        "server_connected",
        "server_connected",
        "Server connection established. Please wait for the job link or at least test to terminate.",
    ),
    ProgressStep("job_link_found", "job_link", ""),
]


@dataclass
class StatusReport:
    """Best information so far about the current run."""

    stage: JobStage
    message: str
    job_link: Optional[str] = None
    error: Optional[ErrorKind] = None

    def __str__(self) -> str:
        return self.message


class JobTracker:
    """Tracks one HyperExecute CLI job at a time through its log file."""

    def __init__(
        self,
        config: TrackerConfig,
        launcher: Launcher,
        working_dir: str | Path,
    ) -> None:
        self._config = config
        self._launcher = launcher
        self._working_dir = Path(working_dir).resolve()
        self._log_path = config.log_path(self._working_dir)

        self._state: Optional[JobRunState] = None
        self._cancel: Optional[CancelToken] = None
        self._handle: Optional[LaunchHandle] = None
        self._step_lock = asyncio.Lock()

    @property
    def state(self) -> Optional[JobRunState]:
        """State of the current run, None before the first run()."""
        return self._state

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _watch(self, predicate: MilestonePredicate, cancel: CancelToken):
        return watch(self._log_path, predicate, cancel)

    # -------------------------------------------------------------------------
    # run
    # -------------------------------------------------------------------------

    async def run(self, credentials: Credentials) -> StatusReport:
        """Start a fresh run: reset state, launch the CLI, look for the trigger.

        Any in-flight watcher from a previous run is cancelled and the
        previous CLI process is terminated first.
        """
        if self._cancel is not None:
            logger.info("Cancelling watchers of the previous run")
            self._cancel.cancel()

        cancel = CancelToken()
        state = JobRunState()
        self._cancel = cancel
        self._state = state

        await self._retire_previous_cli()
        if cancel.cancelled:
            # Replaced again while the old CLI was shutting down
            return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)

        self._remove_stale_log()

        logger.info("Starting test run on Hyperexecute LambdaTest platform...")
        try:
            handle = await self._launcher.launch(credentials, self._config.config_file)
        except LaunchError as e:
            logger.error(f"Error running test in hyperexecute CLI: {e}")
            return StatusReport(
                stage=state.stage,
                message=f"Error running test in hyperexecute CLI: {e}",
            )
        if cancel.cancelled:
            await handle.terminate(self._config.shutdown_grace_ms / 1000)
            return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)
        self._handle = handle

        triggered = await self._watch(self._config.milestones.trigger, cancel)
        if cancel.cancelled:
            return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)

        if triggered:
            state.triggered = True
            message = MSG_TRIGGERED
        else:
            output = handle.output().strip()
            message = f"Failed to trigger CLI Job. CLI said: {output or 'no output yet'}"

        logger.info(f"Test run status: {message}")
        return StatusReport(stage=state.stage, message=message)

    async def _retire_previous_cli(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        exit_code = await handle.terminate(self._config.shutdown_grace_ms / 1000)
        logger.info(f"Previous CLI run stopped (exit code {exit_code})")

    def _remove_stale_log(self) -> None:
        try:
            self._log_path.unlink()
            logger.debug(f"Removed previous CLI log {self._log_path}")
        except FileNotFoundError:
            pass

    # -------------------------------------------------------------------------
    # advance
    # -------------------------------------------------------------------------

    async def advance(self) -> StatusReport:
        """Move the current run forward by at most one milestone.

        Raises:
            RunNotStartedError: if run() was never called
        """
        state = self._state
        cancel = self._cancel
        if state is None or cancel is None:
            raise RunNotStartedError()

        # Terminal fast paths: no log reads
        if state.job_link_found and state.cached_link is not None:
            return StatusReport(
                stage=JobStage.LINK_FOUND,
                message=link_message(state.cached_link),
                job_link=state.cached_link.url,
            )
        if state.terminated_without_link:
            return StatusReport(stage=JobStage.TERMINATED_WITHOUT_LINK, message=MSG_TERMINATED)

        async with self._step_lock:
            if cancel.cancelled:
                return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)
            try:
                return await self._step(state, cancel)
            except Exception as e:
                logger.exception("Error analyzing hyperexecute CLI run")
                return StatusReport(
                    stage=state.stage,
                    message=MSG_COULD_NOT_ANALYZE.format(error=e),
                )

    async def _step(self, state: JobRunState, cancel: CancelToken) -> StatusReport:
        milestones = self._config.milestones

        if state.job_link_found and state.cached_link is not None:
            # Another call got there while we waited for the lock
            return StatusReport(
                stage=JobStage.LINK_FOUND,
                message=link_message(state.cached_link),
                job_link=state.cached_link.url,
            )
        if state.terminated_without_link:
            return StatusReport(stage=JobStage.TERMINATED_WITHOUT_LINK, message=MSG_TERMINATED)

        # 1. Trigger
        if not state.triggered:
            found = await self._watch(milestones.trigger, cancel)
            if cancel.cancelled:
                return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)
            if not found:
                logger.warning("Tests not started - trigger milestone absent from CLI log")
                return StatusReport(stage=state.stage, message=MSG_NOT_STARTED)
            state.triggered = True
            logger.info("CLI Job triggered successfully, checking for job link.")
            return StatusReport(stage=state.stage, message=MSG_TRIGGERED_ON_ADVANCE)

        # 2. Configuration errors
        notes: list[str] = []
        if not state.error_cleared:
            kind = await detect_first_error(self._log_path, error_candidates(milestones), cancel)
            if cancel.cancelled:
                return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)
            if kind is not ErrorKind.NONE:
                message = ERROR_REMEDIATION[kind]
                logger.info(f"Analysis result message: {message}")
                return StatusReport(stage=state.stage, message=message, error=kind)
            state.error_cleared = True
            notes.append(MSG_NO_ERRORS)

        # 3. Job progression: one watcher, for the first pending milestone
        step = next((s for s in PROGRESS_STEPS if not getattr(state, s.flag)), None)
        if step is not None:
            found = await self._watch(getattr(milestones, step.milestone), cancel)
            if cancel.cancelled:
                return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)
            if found:
                report = self._complete_step(state, step)
                if report is not None:
                    return self._with_notes(report, notes)

        # 4. Tracking finished without a link?
        finished = await self._watch(milestones.tracking_finished, cancel)
        if cancel.cancelled:
            return StatusReport(stage=state.stage, message=MSG_SUPERSEDED)
        if finished:
            state.terminated_without_link = True
            logger.warning("Job link is not generated, but test has been terminated.")
            return self._with_notes(
                StatusReport(stage=state.stage, message=MSG_TERMINATED), notes
            )

        logger.info(MSG_STILL_RUNNING)
        return self._with_notes(StatusReport(stage=state.stage, message=MSG_STILL_RUNNING), notes)

    def _complete_step(self, state: JobRunState, step: ProgressStep) -> StatusReport | None:
        """Record a found milestone; None if the job link could not be parsed yet."""
        if step.flag != "job_link_found":
            setattr(state, step.flag, True)
            logger.info(f"Job progression message: {step.message}")
            return StatusReport(stage=state.stage, message=step.message)

        snapshot = read_snapshot(self._log_path)
        link = extract_job_link(snapshot.text) if snapshot is not None else NOT_FOUND
        if link is NOT_FOUND:
            logger.error("Job link label found but no URL could be extracted yet")
            return None

        state.cached_link = link
        state.job_link_found = True
        logger.info(f"Job link generated: {link.url}")
        return StatusReport(stage=state.stage, message=link_message(link), job_link=link.url)

    @staticmethod
    def _with_notes(report: StatusReport, notes: list[str]) -> StatusReport:
        if notes:
            report.message = " ".join([*notes, report.message])
        return report
