"""
Job Link Extractor

Pulls the dashboard URL the CLI prints as ``Job Link: <url>`` out of a log
snapshot. The CLI colours its output, and because it logs JSON the escape
sequences may arrive raw (ESC) or JSON-escaped (``\\u001b``); both are
stripped before matching.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, field_validator

ANSI_ESCAPE = re.compile(r"(?:\x1b|\\u001b|\\x1b)\[[0-9;]*m")

# The URL stops at whitespace, a quote or a backslash, so the JSON tail of
# the line ("\n"}) is not swallowed.
JOB_LINK_PATTERN = re.compile(r"Job Link:\s*(https?://[^\s\"\\]+)")


class JobLink(BaseModel):
    """A validated absolute http(s) URL to the job dashboard."""

    model_config = ConfigDict(frozen=True)

    url: str

    @field_validator("url")
    @classmethod
    def _absolute_http(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Not an absolute http(s) URL: {value!r}")
        return value

    def __str__(self) -> str:
        return self.url


class _NotFound:
    """Sentinel for "no job link in this snapshot"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()


def strip_ansi(text: str) -> str:
    """Remove terminal colour/style sequences."""
    return ANSI_ESCAPE.sub("", text)


def extract_job_link(text: str) -> JobLink | _NotFound:
    """First labelled job URL anywhere in ``text``, or ``NOT_FOUND``."""
    found = JOB_LINK_PATTERN.search(strip_ansi(text))
    if not found:
        return NOT_FOUND
    try:
        return JobLink(url=found.group(1))
    except ValueError:
        return NOT_FOUND
