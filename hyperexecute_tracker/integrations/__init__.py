"""
Integrations Module

External process integrations (the HyperExecute CLI, helper commands).
"""

from .cli_launcher import CliLauncher, Launcher, LaunchError, LaunchHandle
from .process_runner import (
    CommandValidationError,
    ProcessResult,
    ProcessRunner,
    ProcessRunnerError,
    redact_secrets,
    truncate_output,
    validate_command,
)

__all__ = [
    # CLI
    "CliLauncher",
    "Launcher",
    "LaunchError",
    "LaunchHandle",
    # Process
    "CommandValidationError",
    "ProcessResult",
    "ProcessRunner",
    "ProcessRunnerError",
    "redact_secrets",
    "truncate_output",
    "validate_command",
]
