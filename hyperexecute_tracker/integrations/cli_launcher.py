"""
CLI Launcher

Spawns the HyperExecute CLI without waiting for it. Whether the job
succeeded is never read from the exit code: with ``--no-track`` the CLI
may return long before the remote job finishes, so the tracker relies on
the log file the CLI writes into its working directory.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from hyperexecute_tracker.config import Credentials
from hyperexecute_tracker.integrations.process_runner import (
    CommandValidationError,
    ProcessRunnerError,
    redact_secrets,
    truncate_output,
    validate_command,
)

logger = logging.getLogger(__name__)

MAX_CAPTURED_CHARS = 20_000


class LaunchError(ProcessRunnerError):
    """The CLI could not be started."""

    pass


class LaunchHandle:
    """A started CLI process and the output it has produced so far."""

    def __init__(
        self,
        process: Optional[asyncio.subprocess.Process],
        command: list[str],
        redact_patterns: list[str] | None = None,
    ) -> None:
        self.process = process
        self._redact_patterns = redact_patterns or []
        self.command = [redact_secrets(arg, self._redact_patterns) for arg in command]
        self._chunks: list[str] = []
        self._size = 0
        self._readers: list[asyncio.Task] = []

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process else None

    def record(self, text: str) -> None:
        """Keep CLI output, bounded to MAX_CAPTURED_CHARS."""
        text = redact_secrets(text, self._redact_patterns)
        if self._size >= MAX_CAPTURED_CHARS:
            return
        text = text[: MAX_CAPTURED_CHARS - self._size]
        self._chunks.append(text)
        self._size += len(text)

    def output(self) -> str:
        """Captured stdout so far (redacted, truncated)."""
        text, _ = truncate_output("".join(self._chunks))
        return text

    def follow(self) -> None:
        """Drain the process pipes in the background."""
        if self.process is None:
            return
        if self.process.stdout is not None:
            self._readers.append(
                asyncio.ensure_future(self._drain(self.process.stdout, "stdout"))
            )
        if self.process.stderr is not None:
            self._readers.append(
                asyncio.ensure_future(self._drain(self.process.stderr, "stderr"))
            )

    async def _drain(self, stream: asyncio.StreamReader, name: str) -> None:
        while True:
            chunk = await stream.readline()
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace")
            if name == "stdout":
                self.record(text)
                logger.info(f"CLI stdout: {redact_secrets(text.rstrip(), self._redact_patterns)}")
            else:
                logger.error(f"CLI stderr: {redact_secrets(text.rstrip(), self._redact_patterns)}")

    async def stop(self) -> None:
        """Stop following output; the CLI process itself is left alone."""
        for reader in self._readers:
            reader.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers.clear()

    async def terminate(self, grace_seconds: float = 5.0) -> Optional[int]:
        """End the CLI and stop following it.

        SIGTERM first, SIGKILL if it is still alive after ``grace_seconds``.
        Returns the exit code, or None when there is no process.
        """
        process = self.process
        if process is not None and process.returncode is None:
            logger.info(f"Terminating CLI pid {process.pid}")
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=max(grace_seconds, 0.0))
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning(f"CLI pid {process.pid} still running after {grace_seconds}s, killing it")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        await self.stop()
        return self.returncode


class Launcher(ABC):
    """Starts the CLI that produces the log file."""

    @abstractmethod
    async def launch(self, credentials: Credentials, config_path: str) -> LaunchHandle:
        """Start the CLI for ``config_path`` and return immediately."""


class CliLauncher(Launcher):
    """Runs ``hyperexecute --user --key --config [--no-track]``."""

    def __init__(
        self,
        cwd: str | Path,
        cli_binary: str = "./hyperexecute",
        no_track: bool = True,
    ) -> None:
        self.cwd = Path(cwd).resolve()
        self.cli_binary = cli_binary
        self.no_track = no_track

    def build_command(self, credentials: Credentials, config_path: str) -> list[str]:
        if not credentials.is_complete:
            raise LaunchError(
                "LambdaTest credentials are not set. Please provide LT_USERNAME and LT_ACCESS_KEY."
            )
        command = [
            self.cli_binary,
            "--user",
            credentials.username,
            "--key",
            credentials.access_key.get_secret_value(),
            "--config",
            config_path,
        ]
        if self.no_track:
            command.append("--no-track")
        try:
            validate_command(command)
        except CommandValidationError as e:
            raise LaunchError(f"Refusing to launch CLI: {e}") from e
        return command

    async def launch(self, credentials: Credentials, config_path: str) -> LaunchHandle:
        command = self.build_command(credentials, config_path)
        redact = [re.escape(credentials.access_key.get_secret_value())]

        logger.info(f"Running HyperExecute CLI with user: {credentials.username}")
        logger.debug(f"CLI command: {redact_secrets(' '.join(command), redact)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise LaunchError(f"CLI binary not found: {self.cli_binary}") from e
        except OSError as e:
            raise LaunchError(f"Could not start CLI: {e}") from e

        handle = LaunchHandle(process, command, redact_patterns=redact)
        handle.follow()
        logger.info(f"CLI started with pid {process.pid}")
        return handle
