"""
Tests for the job lifecycle tracker.

Acceptance Criteria:
- run() resets state, launches the CLI and polls briefly for the trigger
- advance() moves forward by at most one milestone per call
- Configuration errors are reported with remediation and do not advance
- Once the link is found it is returned from cache without reading the log
- Tracking finished without a link → terminal failure
- A new run() cancels watchers of the previous run and stops its CLI
- Concurrent advance() calls on one run never overlap

Edge Cases:
- advance() before any run() → RunNotStartedError
- Unexpected exception inside a step → generic message, state untouched
- CLI binary missing → launch error reported as a status message
"""

import asyncio
import sys
import time

import pytest

from hyperexecute_tracker.config import (
    Credentials,
    MilestoneConfig,
    MilestonePredicate,
    TrackerConfig,
)
from hyperexecute_tracker.error_race import ErrorKind
from hyperexecute_tracker.integrations.cli_launcher import Launcher, LaunchError, LaunchHandle
from hyperexecute_tracker.run_state import JobStage
from hyperexecute_tracker.tracker import (
    MSG_NOT_STARTED,
    MSG_STILL_RUNNING,
    MSG_SUPERSEDED,
    MSG_TERMINATED,
    JobTracker,
    RunNotStartedError,
)

JOB_URL = "https://hyperexecute.lambdatest.com/hyperexecute/task?jobId=abc"

TRIGGER = '{"level":"info","caller":"cmd/bin.go:201","msg":"Generating TraceID for tracking request: 01K4C93H \\n"}'
CREATING = '{"level":"debug","msg":"Creating archive of target directory: /work/project"}'
LOCATION = '{"level":"debug","msg":"Archive location: /work/project/hyperexecute-code-abc.zip\\n"}'
CONNECTED = '{"level":"debug","msg":"connection to hyperexecute server established successfully."}'
JOB_LINK = (
    '{"level":"info","caller":"jobmanager/manager.go:143",'
    f'"msg":"\\u001b[32mJob Link:\\u001b[0m \\u001b[4m{JOB_URL}\\u001b[0m\\n"}}'
)
FINISHED = '{"level":"debug","caller":"cmd/bin.go:359","msg":"main: all goroutines have finished."}'
INVALID_CREDS = '{"level":"error","msg":"Invalid user/key credentials"}'
PROJECT_MISSING = '{"level":"error","msg":"\\u001b[91mERR::PROJECT::NTFND\\u001b[0m Project not found."}'

CREDENTIALS = Credentials(username="tester", access_key="secret-key")


def fast(term, timeout_ms=150, interval_ms=20):
    return MilestonePredicate(search_term=term, timeout_ms=timeout_ms, interval_ms=interval_ms)


def fast_config(trigger_timeout_ms=150):
    defaults = MilestoneConfig()
    budgets = {
        name: fast(getattr(defaults, name).search_term)
        for name in MilestoneConfig.model_fields
    }
    budgets["trigger"] = fast(defaults.trigger.search_term, timeout_ms=trigger_timeout_ms)
    return TrackerConfig(milestones=MilestoneConfig(**budgets))


class FakeLauncher(Launcher):
    """Writes canned CLI log lines instead of starting a process."""

    def __init__(self, log_path, lines=(), fail=False):
        self.log_path = log_path
        self.lines = list(lines)
        self.fail = fail
        self.launches = 0

    async def launch(self, credentials, config_path):
        self.launches += 1
        if self.fail:
            raise LaunchError("CLI binary not found: ./hyperexecute")
        if self.lines:
            append(self.log_path, *self.lines)
        handle = LaunchHandle(None, ["./hyperexecute", "--config", config_path])
        handle.record("hyperexecute cli starting\n")
        return handle


def append(path, *lines):
    with open(path, "a", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


class SleepingCliLauncher(Launcher):
    """Starts a real long-lived process and writes the trigger line."""

    def __init__(self, log_path):
        self.log_path = log_path
        self.handles = []

    async def launch(self, credentials, config_path):
        process = await asyncio.create_subprocess_exec(
            sys.executable,
            "-c",
            "__import__('time').sleep(30)",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        append(self.log_path, TRIGGER)
        handle = LaunchHandle(process, [sys.executable, "--config", config_path])
        self.handles.append(handle)
        return handle


def make_tracker(tmp_path, lines=(), config=None, fail=False):
    config = config or fast_config()
    launcher = FakeLauncher(config.log_path(tmp_path), lines, fail=fail)
    return JobTracker(config, launcher, tmp_path), launcher


class TestRun:
    """run(): reset, launch, short trigger poll."""

    def test_run_reports_trigger(self, tmp_path):
        async def scenario():
            tracker, launcher = make_tracker(tmp_path, [TRIGGER])
            report = await tracker.run(CREDENTIALS)
            return tracker, launcher, report

        tracker, launcher, report = asyncio.run(scenario())
        assert launcher.launches == 1
        assert report.stage is JobStage.TRIGGERED
        assert report.message == "CLI Job triggered successfully"
        assert tracker.state.triggered

    def test_run_without_trigger_quotes_cli_output(self, tmp_path):
        async def scenario():
            tracker, _ = make_tracker(tmp_path)
            return await tracker.run(CREDENTIALS)

        report = asyncio.run(scenario())
        assert report.stage is JobStage.NOT_TRIGGERED
        assert report.message.startswith("Failed to trigger CLI Job. CLI said:")
        assert "hyperexecute cli starting" in report.message

    def test_run_removes_previous_log(self, tmp_path):
        log = tmp_path / "hyperexecute-cli.log"
        append(log, TRIGGER, JOB_LINK)

        async def scenario():
            tracker, _ = make_tracker(tmp_path)
            return await tracker.run(CREDENTIALS)

        report = asyncio.run(scenario())
        assert report.stage is JobStage.NOT_TRIGGERED
        assert not log.exists()

    def test_run_replaces_state(self, tmp_path):
        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER, INVALID_CREDS])
            await tracker.run(CREDENTIALS)
            first = tracker.state
            await tracker.advance()
            await tracker.run(CREDENTIALS)
            return first, tracker.state

        first, second = asyncio.run(scenario())
        assert first is not second
        assert second.triggered
        assert not second.error_cleared

    def test_launch_error_becomes_message(self, tmp_path):
        async def scenario():
            tracker, _ = make_tracker(tmp_path, fail=True)
            return await tracker.run(CREDENTIALS)

        report = asyncio.run(scenario())
        assert report.stage is JobStage.NOT_TRIGGERED
        assert "CLI binary not found" in report.message


class TestPrecondition:
    """advance() needs a run."""

    def test_advance_before_run_raises(self, tmp_path):
        tracker, _ = make_tracker(tmp_path)
        with pytest.raises(RunNotStartedError):
            asyncio.run(tracker.advance())


class TestScenarios:
    """End-to-end progressions over canned logs."""

    def test_missing_log_reports_not_started(self, tmp_path):
        """Scenario A: nothing in the log, trigger budget of one second."""
        async def scenario():
            tracker, _ = make_tracker(tmp_path, config=fast_config(trigger_timeout_ms=1_000))
            await tracker.run(CREDENTIALS)
            start = time.monotonic()
            report = await tracker.advance()
            return report, time.monotonic() - start

        report, elapsed = asyncio.run(scenario())
        assert report.stage is JobStage.NOT_TRIGGERED
        assert report.message == MSG_NOT_STARTED
        assert 1.0 <= elapsed < 2.5

    def test_trigger_then_error_cleared(self, tmp_path):
        """Scenario B: only the trigger line ever appears."""
        log = tmp_path / "hyperexecute-cli.log"

        async def scenario():
            tracker, _ = make_tracker(tmp_path)
            await tracker.run(CREDENTIALS)
            append(log, TRIGGER)
            first = await tracker.advance()
            second = await tracker.advance()
            return tracker, first, second

        tracker, first, second = asyncio.run(scenario())
        assert first.stage is JobStage.TRIGGERED
        assert second.stage is JobStage.ERROR_CLEARED
        assert "None of the errors are found" in second.message
        assert MSG_STILL_RUNNING in second.message
        assert tracker.state.error_cleared
        assert not tracker.state.upload_started

    def test_invalid_credentials_stalls_run(self, tmp_path):
        """Scenario C: credentials error after the trigger."""
        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER, INVALID_CREDS])
            await tracker.run(CREDENTIALS)
            first = await tracker.advance()
            second = await tracker.advance()
            return tracker, first, second

        tracker, first, second = asyncio.run(scenario())
        for report in (first, second):
            assert report.error is ErrorKind.INVALID_CREDENTIALS
            assert report.stage is JobStage.TRIGGERED
            assert report.message.startswith("Invalid credentials.")
        assert tracker.state.error_cleared is False
        assert tracker.state.triggered is True

    def test_both_errors_report_credentials(self, tmp_path):
        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER, PROJECT_MISSING, INVALID_CREDS])
            await tracker.run(CREDENTIALS)
            return await tracker.advance()

        assert asyncio.run(scenario()).error is ErrorKind.INVALID_CREDENTIALS

    def test_project_not_found(self, tmp_path):
        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER, PROJECT_MISSING])
            await tracker.run(CREDENTIALS)
            return await tracker.advance()

        report = asyncio.run(scenario())
        assert report.error is ErrorKind.PROJECT_NOT_FOUND
        assert report.message.startswith("Project not found.")

    def test_full_progression_to_job_link(self, tmp_path):
        """Scenario D: every milestone present, ANSI around the link."""
        lines = [TRIGGER, CREATING, LOCATION, CONNECTED, JOB_LINK, FINISHED]

        async def scenario():
            tracker, _ = make_tracker(tmp_path, lines)
            reports = [await tracker.run(CREDENTIALS)]
            history = [tracker.state.flags()]
            for _ in range(4):
                reports.append(await tracker.advance())
                history.append(tracker.state.flags())
            return tracker, reports, history

        tracker, reports, history = asyncio.run(scenario())
        assert [r.stage for r in reports] == [
            JobStage.TRIGGERED,
            JobStage.UPLOAD_STARTED,
            JobStage.UPLOAD_DONE,
            JobStage.SERVER_CONNECTED,
            JobStage.LINK_FOUND,
        ]
        assert reports[-1].job_link == JOB_URL
        assert reports[-1].message.endswith(JOB_URL)
        assert tracker.state.cached_link.url == JOB_URL

        # Flags are monotonic across calls
        for before, after in zip(history, history[1:]):
            for flag, was_set in before.items():
                assert after[flag] or not was_set

    def test_link_is_served_from_cache(self, tmp_path):
        """Once found, the link is returned without touching the log."""
        lines = [TRIGGER, CREATING, LOCATION, CONNECTED, JOB_LINK]
        log = tmp_path / "hyperexecute-cli.log"

        async def scenario():
            tracker, _ = make_tracker(tmp_path, lines)
            await tracker.run(CREDENTIALS)
            for _ in range(4):
                found = await tracker.advance()
            log.unlink()
            start = time.monotonic()
            again = [await tracker.advance() for _ in range(3)]
            return found, again, time.monotonic() - start

        found, again, elapsed = asyncio.run(scenario())
        assert found.stage is JobStage.LINK_FOUND
        assert all(r.message == found.message for r in again)
        assert all(r.job_link == JOB_URL for r in again)
        assert elapsed < 0.1

    def test_tracking_finished_without_link(self, tmp_path):
        """Scenario E: CLI stopped and no link was printed."""
        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER, FINISHED])
            await tracker.run(CREDENTIALS)
            first = await tracker.advance()
            second = await tracker.advance()
            return tracker, first, second

        tracker, first, second = asyncio.run(scenario())
        assert first.stage is JobStage.TERMINATED_WITHOUT_LINK
        assert MSG_TERMINATED in first.message
        assert second.stage is JobStage.TERMINATED_WITHOUT_LINK
        assert second.message == MSG_TERMINATED
        assert tracker.state.terminated_without_link
        assert tracker.state.cached_link is None

    def test_one_milestone_per_call(self, tmp_path):
        """Progress stops at the first missing milestone."""
        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER, CREATING, CONNECTED])
            await tracker.run(CREDENTIALS)
            first = await tracker.advance()
            second = await tracker.advance()
            return tracker, first, second

        tracker, first, second = asyncio.run(scenario())
        assert first.stage is JobStage.UPLOAD_STARTED
        assert second.stage is JobStage.UPLOAD_STARTED
        assert second.message == MSG_STILL_RUNNING
        assert not tracker.state.server_connected

    def test_link_label_without_url_is_not_accepted(self, tmp_path):
        lines = [TRIGGER, CREATING, LOCATION, CONNECTED, '{"msg":"Job Link: "}']

        async def scenario():
            tracker, _ = make_tracker(tmp_path, lines)
            await tracker.run(CREDENTIALS)
            reports = [await tracker.advance() for _ in range(4)]
            return tracker, reports[-1]

        tracker, last = asyncio.run(scenario())
        assert last.stage is JobStage.SERVER_CONNECTED
        assert last.message == MSG_STILL_RUNNING
        assert not tracker.state.job_link_found


class TestCancellation:
    """A new run() abandons the old run's watchers."""

    def test_new_run_supersedes_pending_advance(self, tmp_path):
        config = fast_config()
        config.milestones.invalid_credentials = fast(
            config.milestones.invalid_credentials.search_term, timeout_ms=5_000
        )
        log = config.log_path(tmp_path)

        async def scenario():
            launcher = FakeLauncher(log, [TRIGGER])
            tracker = JobTracker(config, launcher, tmp_path)
            await tracker.run(CREDENTIALS)
            stale = asyncio.ensure_future(tracker.advance())
            await asyncio.sleep(0.05)

            start = time.monotonic()
            fresh = await tracker.run(CREDENTIALS)
            old = await asyncio.wait_for(stale, timeout=1.0)
            return tracker, fresh, old, time.monotonic() - start

        tracker, fresh, old, elapsed = asyncio.run(scenario())
        assert old.message == MSG_SUPERSEDED
        assert fresh.stage is JobStage.TRIGGERED
        assert tracker.state.triggered
        assert not tracker.state.error_cleared
        assert elapsed < 1.0


    def test_new_run_terminates_previous_cli(self, tmp_path):
        config = fast_config()
        config.shutdown_grace_ms = 2_000
        launcher = SleepingCliLauncher(config.log_path(tmp_path))

        async def scenario():
            tracker = JobTracker(config, launcher, tmp_path)
            first = await tracker.run(CREDENTIALS)
            second = await tracker.run(CREDENTIALS)
            old_exit = launcher.handles[0].returncode
            current_exit = launcher.handles[1].returncode
            await launcher.handles[1].terminate(grace_seconds=1.0)
            return first, second, old_exit, current_exit

        first, second, old_exit, current_exit = asyncio.run(scenario())
        assert first.stage is JobStage.TRIGGERED
        assert second.stage is JobStage.TRIGGERED
        assert old_exit is not None
        assert current_exit is None
        assert len(launcher.handles) == 2


class TestSerialisedAdvance:
    """Concurrent advance() calls on one run take turns."""

    def test_concurrent_advances_do_not_overlap(self, tmp_path, monkeypatch):
        import hyperexecute_tracker.tracker as tracker_module

        active = 0
        peak = 0
        original_watch = tracker_module.watch

        async def counting_watch(*args, **kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                return await original_watch(*args, **kwargs)
            finally:
                active -= 1

        monkeypatch.setattr(tracker_module, "watch", counting_watch)

        config = fast_config()
        config.milestones.upload_done = fast(config.milestones.upload_done.search_term, timeout_ms=300)

        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER, CREATING], config=config)
            await tracker.run(CREDENTIALS)
            start = time.monotonic()
            reports = await asyncio.gather(tracker.advance(), tracker.advance())
            return tracker, reports, time.monotonic() - start

        tracker, reports, elapsed = asyncio.run(scenario())
        assert peak == 1
        # error race + upload_started, then upload_done timeout + tracking_finished timeout
        assert elapsed >= 0.15 + 0.30 + 0.15
        assert [r.stage for r in reports] == [JobStage.UPLOAD_STARTED, JobStage.UPLOAD_STARTED]
        assert reports[1].message == MSG_STILL_RUNNING
        assert tracker.state.upload_started
        assert not tracker.state.upload_done


class TestFailureHandling:
    """Unexpected errors never escape advance()."""

    def test_unexpected_error_is_reported_without_state_change(self, tmp_path, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr("hyperexecute_tracker.tracker.detect_first_error", boom)

        async def scenario():
            tracker, _ = make_tracker(tmp_path, [TRIGGER])
            await tracker.run(CREDENTIALS)
            before = tracker.state.flags()
            report = await tracker.advance()
            return tracker, before, report

        tracker, before, report = asyncio.run(scenario())
        assert report.message.startswith("Could not analyze the hyperexecute CLI run: disk on fire")
        assert report.stage is JobStage.TRIGGERED
        assert tracker.state.flags() == before
