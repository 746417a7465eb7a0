"""Task model for the workspace queue.

A task is one unit of queued work. Its ``name`` doubles as the workspace
directory and branch name, so it must be usable as both.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from ..errors import InvalidTaskNameError, PersistenceError
from ..utils import _now_iso, _short_id


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Lifecycle status of a queued task."""

    QUEUED = "queued"
    RUNNING = "running"
    VALIDATING = "validating"
    CONFLICT = "conflict"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({TaskStatus.RUNNING, TaskStatus.VALIDATING, TaskStatus.CONFLICT})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NAME_FORBIDDEN_RE = re.compile(r"[\s~^:?*\[\\/]")


def validate_task_name(name: str) -> str:
    """Return *name* stripped, or raise if it cannot be a directory and branch name."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidTaskNameError("task name must not be empty")
    if _NAME_FORBIDDEN_RE.search(cleaned):
        raise InvalidTaskNameError(
            f"task name '{cleaned}' must not contain whitespace, slashes or git ref metacharacters"
        )
    if cleaned.startswith(("-", ".")) or ".." in cleaned or cleaned.endswith((".lock", ".")):
        raise InvalidTaskNameError(f"task name '{cleaned}' is not a valid branch name")
    if "@{" in cleaned:
        raise InvalidTaskNameError(f"task name '{cleaned}' is not a valid branch name")
    return cleaned


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """One unit of queued work bound to a workspace of the same name."""

    id: str = field(default_factory=_short_id)
    name: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.QUEUED
    created_at: str = field(default_factory=_now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    conflicted_files: list[str] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict; unset optional fields are omitted."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "created_at": self.created_at,
        }
        if self.started_at is not None:
            data["started_at"] = self.started_at
        if self.completed_at is not None:
            data["completed_at"] = self.completed_at
        if self.error:
            data["error"] = self.error
        if self.conflicted_files:
            data["conflicted_files"] = list(self.conflicted_files)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize a persisted record.

        Raises:
            PersistenceError: If a required field is missing or the status is unknown.
        """
        if not isinstance(data, dict):
            raise PersistenceError(f"task record must be an object, got {type(data).__name__}")
        task_id = data.get("id")
        name = data.get("name")
        if not task_id or not name:
            raise PersistenceError(f"task record missing 'id' or 'name': {data!r}")
        raw_status = data.get("status", TaskStatus.QUEUED.value)
        try:
            status = TaskStatus(str(raw_status))
        except ValueError as exc:
            raise PersistenceError(f"task {task_id} has unknown status '{raw_status}'") from exc
        conflicted = data.get("conflicted_files") or []
        if not isinstance(conflicted, list):
            raise PersistenceError(f"task {task_id}: 'conflicted_files' must be an array")

        return cls(
            id=str(task_id),
            name=str(name),
            description=str(data.get("description") or ""),
            status=status,
            created_at=str(data.get("created_at") or _now_iso()),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            error=data.get("error") or None,
            conflicted_files=[str(p) for p in conflicted],
        )

    def copy(self) -> "Task":
        return replace(self, conflicted_files=list(self.conflicted_files))

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.QUEUED

    @property
    def is_active(self) -> bool:
        """True while the task owns a workspace that is being worked on or folded."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
