"""Exception hierarchy for the task queue.

Only failures that prevent an operation from being attempted are raised.
Failures of an attempted side effect (workspace creation, commit, fold) are
recorded on the task instead.
"""

from __future__ import annotations


class WsError(Exception):
    """Base class for all queue and workspace errors."""


class TaskNotFoundError(WsError):
    """No task with the given id exists in the queue."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class PersistenceError(WsError):
    """The queue document could not be read or written."""


class DuplicateTaskError(WsError):
    """A task with the same name is already queued."""

    def __init__(self, name: str, existing_id: str) -> None:
        super().__init__(f"task named '{name}' already exists ({existing_id})")
        self.name = name
        self.existing_id = existing_id


class InvalidTaskNameError(WsError):
    """The task name cannot be used as a workspace directory and branch."""


class InvalidTransitionError(WsError):
    """A lifecycle operation was requested from a state that does not allow it."""

    def __init__(self, task_id: str, current: str, action: str, reason: str | None = None) -> None:
        detail = reason or f"not allowed from status '{current}'"
        super().__init__(f"cannot {action} task {task_id}: {detail}")
        self.task_id = task_id
        self.current = current
        self.action = action


class WorkspaceError(WsError):
    """A workspace could not be created, found or removed."""


class WorkspaceNotFoundError(WorkspaceError):
    def __init__(self, name: str) -> None:
        super().__init__(f"workspace '{name}' not found")
        self.name = name


class NotAGitRepositoryError(WsError):
    """The current directory is not inside a git repository."""

    def __init__(self, path: str | None = None) -> None:
        super().__init__("not a git repository" + (f": {path}" if path else ""))


class GitCommandError(WsError):
    """A git query needed to decide what to do next failed."""

    def __init__(self, args: list[str], output: str) -> None:
        super().__init__(f"git {' '.join(args)} failed: {output.strip() or 'no output'}")
        self.args_list = args
        self.output = output
