"""Identifier and filter validation for values that reach a subprocess."""

from __future__ import annotations

import re

_PROJECT_ID_RE = re.compile(r"[A-Za-z0-9_-]+")
# Letters, digits, whitespace and common test-tag characters
_GREP_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9\s@_-]")

MAX_PROJECT_ID_LENGTH = 100
MAX_GREP_LENGTH = 100


def is_valid_project_id(project_id: object) -> bool:
    """Accept only ``[A-Za-z0-9_-]`` ids, which rules out path traversal."""
    if not isinstance(project_id, str) or not project_id:
        return False
    return len(project_id) <= MAX_PROJECT_ID_LENGTH and _PROJECT_ID_RE.fullmatch(project_id) is not None


def sanitize_grep(grep: object) -> str | None:
    """Strip shell metacharacters from a grep filter.

    Returns None when nothing usable is left or the result is too long.

    >>> sanitize_grep("test$(whoami)")
    'testwhoami'
    >>> sanitize_grep(";;;") is None
    True
    """
    if not isinstance(grep, str) or not grep:
        return None
    sanitized = _GREP_DISALLOWED_RE.sub("", grep)
    if 0 < len(sanitized) <= MAX_GREP_LENGTH:
        return sanitized
    return None
