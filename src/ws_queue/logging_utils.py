"""Configure loguru and condense captured subprocess output for logs."""

from __future__ import annotations

import json
import re
import sys
from typing import Any

from loguru import logger

from .constants import MAX_ERROR_CHARS

_CONFLICT_LINE_RE = re.compile(r"^CONFLICT\b.*$", re.M)


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_output(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    """Trim captured git output, keeping the tail where git reports the failure.

    Args:
        text: Combined stdout/stderr of a git command.
        max_chars: Maximum length of the returned text.

    Returns:
        The stripped text, prefixed with an ellipsis marker when truncated.
    """
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    return "…" + text[-(max_chars - 1):]


def conflict_lines(text: str, max_lines: int = 10) -> list[str]:
    """Return the ``CONFLICT (...)`` lines git prints during a rebase."""
    return [m.group(0).strip() for m in _CONFLICT_LINE_RE.finditer(text or "")][:max_lines]


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable output.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
