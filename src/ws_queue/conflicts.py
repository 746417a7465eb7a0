"""Decide whether a failed rebase left recoverable merge conflicts.

The text check is a heuristic over git's output. The structured listing of
unmerged paths is authoritative when git's messages are localised or change
wording between versions.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Sequence

_CONFLICT_TOKEN_RE = re.compile(r"conflict", re.IGNORECASE)


class FailureKind(str, Enum):
    CONFLICT = "conflict"
    FAILURE = "failure"


def looks_like_conflict(output: str) -> bool:
    """Case-insensitive search for the token ``conflict`` in captured output."""
    return bool(_CONFLICT_TOKEN_RE.search(output or ""))


def classify_rebase_failure(output: str, conflicted_files: Sequence[str] = ()) -> FailureKind:
    """Classify a failed rebase step.

    Args:
        output: Combined stdout/stderr of the failed git command.
        conflicted_files: Unmerged paths reported by ``git diff --diff-filter=U``.

    Returns:
        ``FailureKind.CONFLICT`` if the output mentions a conflict or git reports
        unmerged paths; ``FailureKind.FAILURE`` otherwise.
    """
    if looks_like_conflict(output) or any(conflicted_files):
        return FailureKind.CONFLICT
    return FailureKind.FAILURE
