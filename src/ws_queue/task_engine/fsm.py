from __future__ import annotations

from typing import Optional

from ..errors import InvalidTransitionError
from ..utils import _now_iso
from .model import Task, TaskStatus

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset({TaskStatus.RUNNING, TaskStatus.FAILED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.VALIDATING, TaskStatus.FAILED}),
    TaskStatus.VALIDATING: frozenset(
        {TaskStatus.RUNNING, TaskStatus.COMPLETED, TaskStatus.CONFLICT, TaskStatus.FAILED}
    ),
    # conflict -> conflict: a retried fold stopped on conflicts again.
    TaskStatus.CONFLICT: frozenset({TaskStatus.COMPLETED, TaskStatus.CONFLICT, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def require_status(task: Task, action: str, *allowed: TaskStatus) -> None:
    """Raise unless *task* is in one of the *allowed* statuses."""
    if task.status not in allowed:
        expected = " or ".join(s.value for s in allowed)
        raise InvalidTransitionError(
            task.id,
            task.status.value,
            action,
            f"status is '{task.status.value}', expected {expected}",
        )


def _set_running(task: Task) -> None:
    if task.started_at is None:
        task.started_at = _now_iso()


def _set_completed(task: Task) -> None:
    if task.completed_at is None:
        task.completed_at = _now_iso()


def _set_failed(task: Task, error: Optional[str]) -> None:
    if error:
        task.error = error


def transition(
    task: Task,
    new_status: TaskStatus,
    *,
    error: Optional[str] = None,
    conflicted_files: Optional[list[str]] = None,
) -> Task:
    """Move *task* to *new_status* with timestamp bookkeeping.

    Raises:
        InvalidTransitionError: If the edge is not in ``ALLOWED_TRANSITIONS``.
    """
    if not can_transition(task.status, new_status):
        raise InvalidTransitionError(
            task.id,
            task.status.value,
            f"move to '{new_status.value}'",
        )

    if task.status == TaskStatus.CONFLICT and new_status != TaskStatus.CONFLICT:
        task.conflicted_files = []

    task.status = new_status
    if new_status == TaskStatus.RUNNING:
        _set_running(task)
    elif new_status == TaskStatus.COMPLETED:
        _set_completed(task)
    elif new_status == TaskStatus.FAILED:
        _set_failed(task, error)
    elif new_status == TaskStatus.CONFLICT:
        task.conflicted_files = list(conflicted_files or [])
    return task
