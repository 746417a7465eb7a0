"""Fold a workspace branch into the trunk branch.

Folding rebases the workspace branch onto trunk and then fast-forwards trunk
to it, so trunk history stays linear and the outcome is binary: either the
fast-forward succeeds or something upstream needs attention.

Steps, each failure aborting the rest:

1. fetch trunk from the remote in the main repository (failure tolerated)
2. rebase the workspace branch onto trunk inside the workspace
3. checkout trunk in the main repository
4. ``merge --ff-only`` the workspace branch
5. remove the workspace unless asked to keep it
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from loguru import logger

from .constants import DEFAULT_REMOTE
from .conflicts import FailureKind, classify_rebase_failure
from .errors import GitCommandError, WorkspaceError
from .git_coordinator import GitCoordinator, get_git_coordinator
from .git_utils import GitFacade, GitResult
from .logging_utils import conflict_lines, summarize_output
from .workspace import WorkspaceManager


class FoldOutcome(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    FAILURE = "failure"


@dataclass
class FoldResult:
    """Result of one fold attempt."""

    outcome: FoldOutcome
    name: str
    trunk: str
    message: str = ""
    output: str = ""
    conflicted_files: list[str] = field(default_factory=list)
    workspace_removed: bool = False
    cleanup_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == FoldOutcome.SUCCESS

    @property
    def error_text(self) -> str:
        """Message plus captured output, for storing on a failed task."""
        output = summarize_output(self.output)
        return f"{self.message}\n{output}" if output else self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "name": self.name,
            "trunk": self.trunk,
            "message": self.message,
            "output": summarize_output(self.output),
            "conflicted_files": list(self.conflicted_files),
            "workspace_removed": self.workspace_removed,
            "cleanup_error": self.cleanup_error,
        }


class FoldOrchestrator:
    """Run the fold algorithm for workspaces of one repository."""

    def __init__(
        self,
        workspaces: WorkspaceManager,
        git: Optional[GitFacade] = None,
        *,
        remote: str = DEFAULT_REMOTE,
        coordinator: Optional[GitCoordinator] = None,
    ) -> None:
        self.workspaces = workspaces
        self.git = git or workspaces.git
        self.remote = remote
        self.coordinator = coordinator or get_git_coordinator()

    def fold(self, name: str, *, keep_workspace: bool = False) -> FoldResult:
        """Integrate workspace *name* into trunk.

        Never raises for git failures; the outcome and captured output are
        returned in the :class:`FoldResult`.
        """
        repo = self.workspaces.repo_root
        with self.coordinator.locked(repo, f"fold {name}"):
            return self._fold(name, keep_workspace=keep_workspace)

    def _failure(self, name: str, trunk: str, message: str, result: Optional[GitResult] = None) -> FoldResult:
        output = result.output if result is not None else ""
        logger.error("Fold of {} failed: {}", name, message)
        if output:
            logger.debug("{} output:\n{}", result.command, summarize_output(output))
        return FoldResult(FoldOutcome.FAILURE, name, trunk, message=message, output=output)

    def _fold(self, name: str, *, keep_workspace: bool) -> FoldResult:
        repo = self.workspaces.repo_root
        trunk = self.workspaces.default_base

        try:
            ws = self.workspaces.get(name)
        except WorkspaceError as exc:
            return self._failure(name, trunk, str(exc))

        continuing = self.git.rebase_in_progress(ws.path)
        if not continuing:
            try:
                dirty, _ = self.git.has_uncommitted_changes(ws.path)
            except GitCommandError as exc:
                return self._failure(name, trunk, f"failed to check workspace status: {exc}")
            if dirty:
                return self._failure(
                    name,
                    trunk,
                    f"workspace '{name}' has uncommitted changes; commit or stash them before folding",
                )

        logger.info("Folding {} into {}", name, trunk)

        # 1. Fetch. A repository without the remote is fine; fold the local trunk.
        fetched = self.git.fetch(repo, self.remote, trunk)
        if not fetched.ok:
            logger.info("Fetch of {}/{} failed, continuing with local {}", self.remote, trunk, trunk)

        # 2. Rebase (or continue a rebase the operator finished resolving).
        if continuing:
            logger.info("Continuing rebase of {} onto {}", name, trunk)
            rebased = self.git.rebase_continue(ws.path)
        else:
            rebased = self.git.rebase(ws.path, trunk)
        if not rebased.ok:
            files = self.git.conflicted_files(ws.path)
            if classify_rebase_failure(rebased.output, files) == FailureKind.CONFLICT:
                for line in conflict_lines(rebased.output):
                    logger.info("{}", line)
                logger.warning("Rebase of {} onto {} stopped with conflicts in {} file(s)", name, trunk, len(files))
                return FoldResult(
                    FoldOutcome.CONFLICT,
                    name,
                    trunk,
                    message=f"rebase of '{name}' onto '{trunk}' stopped with conflicts; resolve them in {ws.path}",
                    output=rebased.output,
                    conflicted_files=files,
                )
            return self._failure(name, trunk, f"rebase of '{name}' onto '{trunk}' failed", rebased)

        # 3. Checkout trunk in the main repository.
        checked_out = self.git.checkout(repo, trunk)
        if not checked_out.ok:
            return self._failure(name, trunk, f"failed to checkout '{trunk}'", checked_out)

        # 4. Fast-forward only.
        merged = self.git.merge_ff_only(repo, name)
        if not merged.ok:
            return self._failure(
                name,
                trunk,
                f"merge of '{name}' into '{trunk}' failed (not fast-forward); the rebase may not have completed",
                merged,
            )
        logger.info("Merged {} into {}", name, trunk)

        result = FoldResult(FoldOutcome.SUCCESS, name, trunk, message=f"merged '{name}' into '{trunk}'")

        # 5. Cleanup.
        if not keep_workspace:
            try:
                self.workspaces.remove(name, force=True)
                result.workspace_removed = True
            except WorkspaceError as exc:
                result.cleanup_error = str(exc)
                logger.warning("Failed to remove workspace {}: {}", name, exc)
        return result
