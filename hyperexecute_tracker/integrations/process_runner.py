"""
Process Runner

Blocking helper commands that finish on their own (fetching the CLI with
curl, probing a binary). Argument arrays only, never a shell. Anything that
reaches a log line or a result passes through redact_secrets first.
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"

# Generic secret shapes, applied after any caller-supplied patterns
SECRET_PATTERNS = [
    r"LT_[A-Za-z0-9]{20,}",  # LambdaTest access keys
    r"[A-Za-z0-9+/]{40,}={0,2}",  # base64 blobs
    r"[a-f0-9]{32,}",  # hex digests / tokens
]

# Shell metacharacters, rejected in any argument
DANGEROUS_CHARS = [";", "&&", "||", "|", "`", "$", "\n", "\r"]


@dataclass
class ProcessResult:
    """Outcome of one helper command."""

    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False


class ProcessRunnerError(Exception):
    """Helper command could not be set up."""

    pass


class CommandValidationError(ProcessRunnerError):
    """Argument array rejected before execution."""

    pass


def validate_command(command: list[str]) -> None:
    """Reject empty commands and arguments carrying shell syntax."""
    if not command:
        raise CommandValidationError("Empty command")

    for position, arg in enumerate(command):
        bad = next((c for c in DANGEROUS_CHARS if c in arg), None)
        if bad is not None:
            raise CommandValidationError(
                f"Dangerous character {bad!r} in argument {position}: {arg[:50]}"
            )


def redact_secrets(text: str, extra_patterns: list[str] | None = None) -> str:
    """Replace secret-looking substrings with ***REDACTED***.

    ``extra_patterns`` are applied first, so a known access key is hidden
    whole even when it would not match a generic token shape.
    """
    for pattern in [*(extra_patterns or []), *SECRET_PATTERNS]:
        text = re.sub(pattern, REDACTED, text)
    return text


def truncate_output(text: str, max_lines: int = 500, max_chars: int = 50000) -> tuple[str, bool]:
    """Clip text to ``max_chars`` and ``max_lines``.

    Returns: (text, was_truncated)
    """
    clipped = text[:max_chars]
    lines = clipped.split("\n")
    truncated = len(clipped) < len(text) or len(lines) > max_lines
    if not truncated:
        return text, False
    return "\n".join(lines[:max_lines]) + "\n... [TRUNCATED]", True


class ProcessRunner:
    """Runs helper commands in one working directory."""

    def __init__(
        self,
        cwd: str | Path,
        default_timeout: int = 60,
        redact_output: bool = True,
        extra_redact_patterns: list[str] | None = None,
    ):
        self.cwd = Path(cwd).resolve()
        self.default_timeout = default_timeout
        self.redact_output = redact_output
        self.extra_redact_patterns = extra_redact_patterns or []

        if not self.cwd.is_dir():
            raise ProcessRunnerError(f"Working directory does not exist: {self.cwd}")

    def _clean(self, text: str) -> str:
        if self.redact_output:
            text = redact_secrets(text, self.extra_redact_patterns)
        text, _ = truncate_output(text)
        return text

    def run(
        self,
        command: list[str],
        timeout: int | None = None,
        validate: bool = True,
    ) -> ProcessResult:
        """Run ``command`` to completion.

        Start-up failures and timeouts come back as a failed ProcessResult
        (exit code -1) rather than an exception.

        Raises:
            CommandValidationError: if ``validate`` and the command is unsafe
        """
        if validate:
            validate_command(command)

        timeout = timeout or self.default_timeout
        started = time.monotonic()
        logger.debug(f"Running: {redact_secrets(' '.join(command), self.extra_redact_patterns)}")

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        def failed(reason: str, timed_out: bool = False) -> ProcessResult:
            logger.warning(f"{command[0]} failed: {reason}")
            return ProcessResult(False, -1, "", reason, elapsed_ms(), timed_out)

        try:
            completed = subprocess.run(
                command,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                shell=False,
            )
        except subprocess.TimeoutExpired:
            return failed(f"Command timed out after {timeout}s", timed_out=True)
        except FileNotFoundError:
            return failed(f"Command not found: {command[0]}")
        except OSError as e:
            return failed(self._clean(str(e)))

        result = ProcessResult(
            success=completed.returncode == 0,
            exit_code=completed.returncode,
            stdout=self._clean(completed.stdout),
            stderr=self._clean(completed.stderr),
            duration_ms=elapsed_ms(),
        )
        logger.debug(f"{command[0]} exited {result.exit_code} in {result.duration_ms}ms")
        return result
