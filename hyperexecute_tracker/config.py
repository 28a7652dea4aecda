"""
Tracker Configuration

Pydantic models for milestone budgets, logging and CLI locations, plus the
pyproject.toml loader.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr

logger = logging.getLogger(__name__)

PYPROJECT_TABLE = "hyperexecute-tracker"


# =============================================================================
# MILESTONES
# =============================================================================


class MilestonePredicate(BaseModel):
    """What to look for in the CLI log and how long to keep looking."""

    model_config = ConfigDict(frozen=True)

    search_term: str = Field(min_length=1)
    timeout_ms: int = Field(default=30_000, ge=0)
    interval_ms: int = Field(default=2_000, gt=0)


def _predicate(term: str, timeout_ms: int, interval_ms: int):
    return Field(
        default_factory=lambda: MilestonePredicate(
            search_term=term, timeout_ms=timeout_ms, interval_ms=interval_ms
        )
    )


class MilestoneConfig(BaseModel):
    """Per-milestone search terms and polling budgets."""

    trigger: MilestonePredicate = _predicate("Generating TraceID for tracking request", 10_000, 1_000)

    # Configuration errors, checked together right after the trigger
    invalid_credentials: MilestonePredicate = _predicate("Invalid user/key credentials", 30_000, 2_000)
    project_not_found: MilestonePredicate = _predicate("Project not found", 30_000, 2_000)
    yaml_parse_error: MilestonePredicate = _predicate("Unable to parse hyperexecute.yaml", 30_000, 2_000)
    yaml_config_error: MilestonePredicate = _predicate("Invalid yaml content", 30_000, 2_000)
    yaml_not_found: MilestonePredicate = _predicate("Unable to find hyperexecute config file", 30_000, 2_000)

    # Job progression
    upload_started: MilestonePredicate = _predicate("Creating archive", 30_000, 2_000)
    upload_done: MilestonePredicate = _predicate("Archive location", 300_000, 10_000)
    server_connected: MilestonePredicate = _predicate("Connection to hyperexecute server", 30_000, 2_000)
    job_link: MilestonePredicate = _predicate("Job Link", 30_000, 5_000)

    tracking_finished: MilestonePredicate = _predicate("goroutines have finished", 5_000, 1_000)


# =============================================================================
# LOGGING / TRACKER
# =============================================================================


class LoggingConfig(BaseModel):
    """Where the tracker writes its own diagnostic log."""

    file: str = "hyperex_mcp.log"
    level: str = "DEBUG"
    max_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    backup_count: int = Field(default=5, ge=0)


class TrackerConfig(BaseModel):
    """Top-level configuration for the job tracker."""

    log_file: str = "hyperexecute-cli.log"
    cli_binary: str = "./hyperexecute"
    config_file: str = "hyperexecute.yaml"
    no_track: bool = True
    shutdown_grace_ms: int = Field(default=5_000, ge=0)
    milestones: MilestoneConfig = Field(default_factory=MilestoneConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    ignore_entries: list[str] = Field(
        default_factory=lambda: ["node_modules/", ".m2/", ".gradle/", "target"]
    )

    def log_path(self, root: str | Path) -> Path:
        """Absolute path of the CLI log for a working directory."""
        path = Path(self.log_file)
        if not path.is_absolute():
            path = Path(root) / path
        return path.resolve()


class Credentials(BaseModel):
    """LambdaTest credentials handed to the CLI."""

    username: str | None = None
    access_key: SecretStr | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.username) and bool(self.access_key and self.access_key.get_secret_value())

    @classmethod
    def from_env(cls) -> Credentials:
        access_key = os.environ.get("LT_ACCESS_KEY")
        return cls(
            username=os.environ.get("LT_USERNAME"),
            access_key=SecretStr(access_key) if access_key else None,
        )


def load_config_from_pyproject(repo_root: Path) -> TrackerConfig:
    """Load configuration from pyproject.toml.

    Args:
        repo_root: Path to repository root

    Returns:
        TrackerConfig (defaults if not found)
    """
    pyproject_path = Path(repo_root) / "pyproject.toml"

    if not pyproject_path.exists():
        return TrackerConfig()

    try:
        import tomllib
    except ImportError:
        import tomli as tomllib

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)

        tool_config = data.get("tool", {}).get(PYPROJECT_TABLE, {})

        if not tool_config:
            return TrackerConfig()

        return TrackerConfig(**tool_config)

    except Exception as e:
        logger.warning(f"Could not parse {pyproject_path}: {e}")
        return TrackerConfig()
