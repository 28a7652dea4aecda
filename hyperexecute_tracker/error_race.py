"""
Error Race Detector

Watches for every known CLI configuration error at once and reports the
highest-priority one that actually appeared.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path

from hyperexecute_tracker.config import MilestoneConfig, MilestonePredicate
from hyperexecute_tracker.watcher import CancelToken, MilestoneResult, poll_milestone

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """CLI configuration errors, highest priority first."""

    INVALID_CREDENTIALS = "InvalidCredentials"
    PROJECT_NOT_FOUND = "ProjectNotFound"
    YAML_PARSE_ERROR = "YAMLParseError"
    YAML_CONFIG_ERROR = "YAMLConfigError"
    YAML_NOT_FOUND = "YAMLNotFound"
    NONE = "None"

    @property
    def priority(self) -> int:
        return list(ErrorKind).index(self)


ERROR_REMEDIATION: dict[ErrorKind, str] = {
    ErrorKind.INVALID_CREDENTIALS: (
        "Invalid credentials. Please input the valid hyperexecute credentials and run tests again."
    ),
    ErrorKind.PROJECT_NOT_FOUND: (
        "Project not found. Please input the valid hyperexecute project name, ID into yaml "
        "and run tests again."
    ),
    ErrorKind.YAML_PARSE_ERROR: (
        "Unable to parse hyperexecute.yaml. Please create a new valid hyperexecute.yaml "
        "and run tests again."
    ),
    ErrorKind.YAML_CONFIG_ERROR: (
        "Invalid yaml content. Please create a new valid hyperexecute.yaml and run tests again."
    ),
    ErrorKind.YAML_NOT_FOUND: (
        "YAML config file not found. Please create a new hyperexecute.yaml file and run tests again."
    ),
}


def error_candidates(milestones: MilestoneConfig) -> dict[ErrorKind, MilestonePredicate]:
    """Error predicates from configuration, in priority order."""
    return {
        ErrorKind.INVALID_CREDENTIALS: milestones.invalid_credentials,
        ErrorKind.PROJECT_NOT_FOUND: milestones.project_not_found,
        ErrorKind.YAML_PARSE_ERROR: milestones.yaml_parse_error,
        ErrorKind.YAML_CONFIG_ERROR: milestones.yaml_config_error,
        ErrorKind.YAML_NOT_FOUND: milestones.yaml_not_found,
    }


def _decided(
    ordered: list[tuple[ErrorKind, asyncio.Task]],
) -> ErrorKind | None:
    """Winner once every higher-priority watcher has settled, else None."""
    for kind, task in ordered:
        if not task.done():
            return None
        if task.result() is MilestoneResult.FOUND:
            return kind
    return ErrorKind.NONE


async def detect_first_error(
    path: str | Path,
    candidates: dict[ErrorKind, MilestonePredicate],
    cancel: CancelToken | None = None,
) -> ErrorKind:
    """Run all candidate watchers concurrently and resolve by priority.

    A quick timeout never beats a slower watcher that matches: the result is
    only decided when every higher-priority watcher has settled. Lower
    priority watchers still pending at that point are cancelled.
    """
    ordered = sorted(candidates.items(), key=lambda item: item[0].priority)
    ordered = [(kind, pred) for kind, pred in ordered if kind is not ErrorKind.NONE]
    if not ordered:
        return ErrorKind.NONE

    tasks = [
        (kind, asyncio.ensure_future(poll_milestone(path, predicate, cancel)))
        for kind, predicate in ordered
    ]

    try:
        pending = {task for _, task in tasks}
        winner = None
        while winner is None:
            _, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            winner = _decided(tasks)
    finally:
        for _, task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)

    if winner is not ErrorKind.NONE:
        logger.info(f"First CLI error detected: {winner.value}")
    else:
        logger.debug("No CLI configuration errors found in log")
    return winner
