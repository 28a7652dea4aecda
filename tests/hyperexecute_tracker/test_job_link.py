"""
Tests for the job link extractor.

Acceptance Criteria:
- ANSI styling is removed before matching
- The first "Job Link: <url>" anywhere in the log wins
- Absence is reported with the NOT_FOUND sentinel, never an exception

Edge Cases:
- JSON-escaped escape sequences (\\u001b[..m) inside log lines
- The JSON tail ("\\n"}) after the URL
- Label present without a URL
"""

import pytest

from hyperexecute_tracker.job_link import NOT_FOUND, JobLink, extract_job_link, strip_ansi

URL = "https://hyperexecute.lambdatest.com/hyperexecute/task?jobId=abc"


class TestStripAnsi:
    """ANSI removal."""

    def test_strips_raw_escape_sequences(self):
        assert strip_ansi("\x1b[4m\x1b[1mExecution Plan\x1b[0m") == "Execution Plan"

    def test_strips_json_escaped_sequences(self):
        assert strip_ansi("Mode:    \\u001b[36mautosplit\\u001b[0m") == "Mode:    autosplit"

    def test_plain_text_untouched(self):
        assert strip_ansi("Job Link: " + URL) == "Job Link: " + URL


class TestExtractJobLink:
    """URL extraction."""

    def test_extracts_plain_link(self):
        link = extract_job_link(f"Job Link: {URL}\n")
        assert isinstance(link, JobLink)
        assert link.url == URL

    def test_extracts_link_wrapped_in_ansi(self):
        text = f"\x1b[32mJob Link:\x1b[0m \x1b[4m{URL}\x1b[0m\n"
        assert extract_job_link(text).url == URL

    def test_extracts_from_json_log_line(self):
        text = (
            '{"level":"info","caller":"jobmanager/manager.go:143",'
            f'"msg":"Job Link: {URL}\\n"}}\n'
        )
        assert extract_job_link(text).url == URL

    def test_label_anywhere_in_file(self):
        text = "header\n" + f"Job Link: {URL}\n" + "main: all goroutines have finished.\n" * 3
        assert extract_job_link(text).url == URL

    def test_first_match_wins(self):
        text = f"Job Link: {URL}\nJob Link: https://example.com/other\n"
        assert extract_job_link(text).url == URL

    def test_missing_link_returns_sentinel(self):
        result = extract_job_link("Stopping pipeline gracefully\n")
        assert result is NOT_FOUND
        assert not result

    def test_label_without_url_returns_sentinel(self):
        assert extract_job_link("Job Link: pending\n") is NOT_FOUND


class TestJobLinkModel:
    """URL validation."""

    def test_rejects_relative_url(self):
        with pytest.raises(ValueError):
            JobLink(url="/hyperexecute/task?jobId=abc")

    def test_str_is_url(self):
        assert str(JobLink(url=URL)) == URL
