"""Command API over the task queue.

Each method loads the task from the store, checks the lifecycle precondition,
performs the side effect (workspace creation, validation, commit, fold, agent
launch) and persists the resulting status. Failures of the side effect are
recorded on the task; only precondition and lookup failures raise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..agent import AgentLauncher
from ..config import WsConfig
from ..errors import (
    GitCommandError,
    InvalidTransitionError,
    NotAGitRepositoryError,
    TaskNotFoundError,
    WorkspaceError,
)
from ..fold import FoldOrchestrator, FoldOutcome, FoldResult
from ..logging_utils import summarize_output
from ..workspace import WorkspaceManager
from .fsm import require_status, transition
from .model import Task, TaskStatus
from .store import QueueStore

# Statuses in which a task holds its workspace.
_WORKSPACE_OWNERS = (TaskStatus.RUNNING, TaskStatus.VALIDATING, TaskStatus.CONFLICT)


@dataclass
class ValidationReport:
    task: Task
    has_changes: bool
    summary: str = ""
    commits_ahead: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "has_changes": self.has_changes,
            "commits_ahead": self.commits_ahead,
            "summary": self.summary,
        }


@dataclass
class FoldReport:
    task: Task
    fold: Optional[FoldResult] = None
    error: Optional[str] = None
    # Notes from the commit step that precedes the fold.
    messages: list[str] = field(default_factory=list)

    @property
    def status(self) -> TaskStatus:
        return self.task.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "fold": self.fold.to_dict() if self.fold else None,
            "error": self.error,
            "messages": list(self.messages),
        }


class TaskEngine:
    """Drive tasks through queued → running → validating → completed."""

    def __init__(
        self,
        store: QueueStore,
        config: WsConfig,
        workspaces: Optional[WorkspaceManager] = None,
        *,
        folder: Optional[FoldOrchestrator] = None,
        agent: Optional[AgentLauncher] = None,
    ) -> None:
        self.store = store
        self.config = config
        self._workspaces = workspaces
        self._folder = folder
        self.agent = agent or AgentLauncher(config.agent_cmd)

    # -- collaborators ------------------------------------------------------

    @property
    def workspaces(self) -> WorkspaceManager:
        if self._workspaces is None:
            raise NotAGitRepositoryError()
        return self._workspaces

    @property
    def folder(self) -> FoldOrchestrator:
        if self._folder is None:
            self._folder = FoldOrchestrator(self.workspaces)
        return self._folder

    # -- queries ------------------------------------------------------------

    def list(self) -> list[Task]:
        return self.store.list()

    def get(self, task_id: str) -> Task:
        task = self.store.get_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def find(self, ref: str) -> Task:
        """Resolve *ref* as an id, a task name, or a unique id prefix."""
        task = self.store.get_by_id(ref) or self.store.get_by_name(ref)
        if task is not None:
            return task
        matches = [t for t in self.store.list() if t.id.startswith(ref)] if ref else []
        if len(matches) == 1:
            return matches[0]
        raise TaskNotFoundError(ref)

    def next_pending(self) -> Optional[Task]:
        return self.store.get_next_pending()

    def get_active(self) -> Optional[Task]:
        return self.store.get_active()

    # -- queue edits --------------------------------------------------------

    def add(self, name: str, description: str = "") -> Task:
        task = self.store.add(name, description)
        logger.info("Added task {} ({})", task.name, task.id)
        return task

    def remove(self, task_id: str) -> Task:
        return self.store.remove(task_id)

    def clear_terminal_tasks(self) -> int:
        return self.store.clear()

    # -- lifecycle ----------------------------------------------------------

    def _fail(self, task: Task, error: str) -> Task:
        transition(task, TaskStatus.FAILED, error=error)
        self.store.update_task(task)
        logger.error("Task {} failed: {}", task.name, error)
        return task

    def start(self, task_id: str, *, launch_agent: bool = True) -> Task:
        """Create the task's workspace from trunk and optionally launch the agent in it."""
        task = self.get(task_id)
        require_status(task, "start", TaskStatus.QUEUED)

        try:
            ws = self.workspaces.create(task.name)
        except WorkspaceError as exc:
            return self._fail(task, f"failed to start workspace: {exc}")

        transition(task, TaskStatus.RUNNING)
        self.store.update_task(task)
        logger.info("Started task {} in {}", task.name, ws.path)

        if launch_agent:
            self.agent.launch(ws.path)
        return task

    def process_next(self, *, launch_agent: bool = True) -> Optional[Task]:
        """Start the first queued task, if any."""
        task = self.next_pending()
        if task is None:
            return None
        return self.start(task.id, launch_agent=launch_agent)

    def _workspace_path(self, task: Task) -> Path:
        return self.workspaces.path_for(task.name)

    def validate(self, task_id: str) -> ValidationReport:
        """Summarize the workspace changes and move the task to ``validating``.

        The task moves to ``validating`` even without changes; the caller
        decides whether to commit or reject.
        """
        task = self.get(task_id)
        require_status(task, "validate", TaskStatus.RUNNING)

        try:
            path = self._workspace_path(task)
            has_changes, _ = self.workspaces.git.has_uncommitted_changes(path)
            status = self.workspaces.git.status_short(path)
        except (WorkspaceError, GitCommandError) as exc:
            self._fail(task, f"validation failed: {exc}")
            return ValidationReport(task=task, has_changes=False, summary=str(exc))

        git = self.workspaces.git
        sections = []
        if status.strip():
            sections.append(status.rstrip())
        diff_stat = git.diff_stat(path)
        if diff_stat.strip():
            sections.append(diff_stat.rstrip())
        ahead = git.commits_ahead(path, self.workspaces.default_base)

        transition(task, TaskStatus.VALIDATING)
        self.store.update_task(task)
        return ValidationReport(
            task=task,
            has_changes=has_changes,
            summary="\n\n".join(sections),
            commits_ahead=ahead,
        )

    def reject(self, task_id: str) -> Task:
        """Send a validating task back to ``running`` for more work."""
        task = self.get(task_id)
        require_status(task, "reject", TaskStatus.VALIDATING)
        transition(task, TaskStatus.RUNNING)
        self.store.update_task(task)
        return task

    def commit_and_fold(self, task_id: str, message: str, *, keep_workspace: bool = False) -> FoldReport:
        """Stage and commit everything in the workspace, then fold it into trunk.

        Raises:
            InvalidTransitionError: If the task is not validating or *message*
                is empty. Nothing is run in that case.
        """
        task = self.get(task_id)
        require_status(task, "commit", TaskStatus.VALIDATING)
        if not (message or "").strip():
            raise InvalidTransitionError(task.id, task.status.value, "commit", "commit message must not be empty")

        git = self.workspaces.git
        try:
            path = self._workspace_path(task)
            dirty, _ = git.has_uncommitted_changes(path)
        except (WorkspaceError, GitCommandError) as exc:
            self._fail(task, f"commit failed: {exc}")
            return FoldReport(task=task, error=task.error)

        messages: list[str] = []
        if dirty:
            staged = git.add_all(path)
            if not staged.ok:
                self._fail(task, f"failed to stage changes: {summarize_output(staged.output)}")
                return FoldReport(task=task, error=task.error)
            committed = git.commit(path, message.strip())
            if not committed.ok:
                self._fail(task, f"failed to commit: {summarize_output(committed.output)}")
                return FoldReport(task=task, error=task.error)
            messages.append("committed changes")
        else:
            # The agent may already have committed; fold what is on the branch.
            messages.append("no uncommitted changes; folding existing commits")

        report = self._fold(task, keep_workspace=keep_workspace)
        report.messages = messages
        return report

    def retry_fold(self, task_id: str, *, keep_workspace: bool = False) -> FoldReport:
        """Run the fold again after conflicts were resolved."""
        task = self.get(task_id)
        require_status(task, "retry fold of", TaskStatus.CONFLICT)
        return self._fold(task, keep_workspace=keep_workspace)

    def _fold(self, task: Task, *, keep_workspace: bool) -> FoldReport:
        result = self.folder.fold(task.name, keep_workspace=keep_workspace)
        if result.outcome == FoldOutcome.SUCCESS:
            transition(task, TaskStatus.COMPLETED)
            logger.info("Task {} completed", task.name)
        elif result.outcome == FoldOutcome.CONFLICT:
            transition(task, TaskStatus.CONFLICT, conflicted_files=result.conflicted_files)
        else:
            transition(task, TaskStatus.FAILED, error=f"fold failed: {result.error_text}")
        self.store.update_task(task)
        error = task.error if task.status == TaskStatus.FAILED else None
        return FoldReport(task=task, fold=result, error=error)

    def auto_resolve(self, task_id: str) -> int:
        """Launch the agent in the conflicted workspace; the task stays in ``conflict``.

        Returns the agent's exit code. Call :meth:`retry_fold` afterwards.
        """
        task = self.get(task_id)
        require_status(task, "auto-resolve", TaskStatus.CONFLICT)
        path = self._workspace_path(task)
        prompt = self.config.resolve_prompt.replace("{base}", self.workspaces.default_base)
        code = self.agent.launch(path, prompt)

        # Refresh the list so the operator sees what is still unresolved.
        transition(task, TaskStatus.CONFLICT, conflicted_files=self.workspaces.git.conflicted_files(path))
        self.store.update_task(task)
        return code

    def fold_workspace(self, name: str, *, keep_workspace: bool = False) -> FoldResult:
        """Fold a workspace that is not tracked by an active task.

        Raises:
            InvalidTransitionError: If a running, validating or conflicted task
                owns the workspace; use ``commit_and_fold`` or ``retry_fold``.
        """
        task = self.store.get_by_name(name)
        if task is not None and task.status in _WORKSPACE_OWNERS:
            raise InvalidTransitionError(
                task.id,
                task.status.value,
                "fold workspace of",
                f"task '{task.name}' is {task.status.value}; use commit or retry instead",
            )
        return self.folder.fold(name, keep_workspace=keep_workspace)
