"""
CLI workspace setup: locate or download the HyperExecute binary and keep
bulky build directories out of the archive the CLI uploads.
"""

from __future__ import annotations

import logging
import os
import stat
import sys
from pathlib import Path

from hyperexecute_tracker.integrations.process_runner import ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)

DOWNLOAD_BASE_URL = "https://downloads.lambdatest.com/hyperexecute"

IGNORE_CANDIDATES = (".gitignore", ".hyperexecuteignore")

# Directories never worth walking into when looking for the binary
_SKIP_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", ".m2", ".gradle", "target"}


def cli_file_name(platform: str | None = None) -> str:
    platform = platform or sys.platform
    return "hyperexecute.exe" if platform.startswith("win") else "hyperexecute"


def download_url(platform: str | None = None) -> str:
    """Download URL of the CLI binary for a ``sys.platform`` value."""
    platform = platform or sys.platform
    if platform == "darwin":
        os_name = "darwin"
    elif platform.startswith("win"):
        os_name = "windows"
    else:
        os_name = "linux"
    return f"{DOWNLOAD_BASE_URL}/{os_name}/{cli_file_name(platform)}"


def find_cli(root: str | Path, name: str = "hyperexecute") -> list[Path]:
    """All files named ``name`` (or ``name``.exe) below ``root``."""
    root = Path(root).resolve()
    wanted = {name.lower(), f"{name.lower()}.exe"}
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in _SKIP_DIRS]
        for filename in filenames:
            if filename.lower() in wanted:
                found.append(Path(dirpath) / filename)
    return sorted(found)


def download_cli(
    root: str | Path,
    platform: str | None = None,
    runner: ProcessRunner | None = None,
    timeout: int = 300,
) -> tuple[ProcessResult, Path]:
    """Fetch the CLI into ``root`` with curl and make it executable.

    Returns:
        (curl result, path of the binary)
    """
    root = Path(root).resolve()
    runner = runner or ProcessRunner(root, default_timeout=timeout)
    target = root / cli_file_name(platform)
    url = download_url(platform)

    logger.info(f"Downloading hyperexecute CLI from {url}")
    result = runner.run(["curl", "-s", "-f", "-L", "-o", str(target), url], timeout=timeout)

    if result.success and target.exists():
        mode = target.stat().st_mode
        target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.info(f"Downloaded hyperexecute CLI to {target}")
    else:
        logger.error(f"Error in downloading hyperexecute CLI: {result.stderr or result.exit_code}")

    return result, target


def ensure_ignore_entries(root: str | Path, entries: list[str]) -> tuple[Path, list[str]]:
    """Make sure an ignore file lists every entry.

    Uses ``.gitignore`` if present, else ``.hyperexecuteignore`` (created if
    needed). Missing entries are appended as ``**/<entry>``; existing lines
    match case-insensitively, with or without the ``**/`` prefix. The file
    is only rewritten when something was added.

    Returns:
        (ignore file path, entries added)
    """
    root = Path(root).resolve()
    ignore_file = next(
        (root / name for name in IGNORE_CANDIDATES if (root / name).is_file()),
        root / ".hyperexecuteignore",
    )
    logger.debug(f"Ignore file selected: {ignore_file}")

    content = ignore_file.read_text(encoding="utf-8") if ignore_file.exists() else ""
    existing = {line.strip().lower() for line in content.splitlines() if line.strip()}

    added = []
    for entry in entries:
        lowered = entry.lower()
        if lowered in existing or f"**/{lowered}" in existing:
            continue
        added.append(f"**/{entry}")
        existing.add(f"**/{lowered}")

    if added or not ignore_file.exists():
        prefix = content if not content or content.endswith("\n") else content + "\n"
        ignore_file.write_text(prefix + "".join(f"{line}\n" for line in added), encoding="utf-8")
        logger.info(f"Updated ignore file {ignore_file}: added {added}")

    return ignore_file, added
