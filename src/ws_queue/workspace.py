"""Workspace registry: git worktrees living under the configured workspace directory."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import WsConfig
from .errors import GitCommandError, WorkspaceError, WorkspaceNotFoundError
from .git_utils import GitFacade
from .logging_utils import summarize_output


@dataclass
class Workspace:
    name: str
    path: Path
    branch: str
    modified: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "branch": self.branch,
            "modified": self.modified.isoformat() if self.modified else None,
        }


@dataclass
class WorkspaceStatus:
    workspace: Workspace
    commits_ahead: int = 0
    # None when git status could not be read.
    modified_files: Optional[int] = None
    last_commit: Optional[tuple[str, str]] = None

    def to_dict(self) -> dict[str, Any]:
        data = self.workspace.to_dict()
        data["commits_ahead"] = self.commits_ahead
        data["modified_files"] = self.modified_files
        if self.last_commit:
            data["last_commit"] = {"subject": self.last_commit[0], "when": self.last_commit[1]}
        else:
            data["last_commit"] = None
        return data


@dataclass
class PruneReport:
    """What a prune found and did. Orphans are directories git no longer tracks."""

    dry_run: bool = False
    metadata_pruned: bool = False
    orphans: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "metadata_pruned": self.metadata_pruned,
            "orphans": [str(p) for p in self.orphans],
            "removed": [str(p) for p in self.removed],
            "errors": list(self.errors),
        }


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.resolve().relative_to(directory.resolve())
    except ValueError:
        return False
    return True


def run_hook(command: str, workspace: Path, name: str) -> int:
    """Run a hook command with ``{name}``/``{path}`` substituted, inside *workspace*."""
    command = command.replace("{name}", name).replace("{path}", str(workspace))
    logger.debug("Running hook in {}: {}", workspace, command)
    proc = subprocess.run(["sh", "-c", command], cwd=workspace, check=False)
    return proc.returncode


class WorkspaceManager:
    """Create, look up and remove workspaces for a repository."""

    def __init__(self, repo_root: Path, config: WsConfig, git: Optional[GitFacade] = None) -> None:
        self.repo_root = repo_root
        self.config = config
        self.git = git or GitFacade()
        self._default_base: Optional[str] = None

    @classmethod
    def discover(cls, config: WsConfig, cwd: Optional[Path] = None, git: Optional[GitFacade] = None) -> "WorkspaceManager":
        """Build a manager for the repository containing *cwd*.

        Raises:
            NotAGitRepositoryError: If *cwd* is not inside a git repository.
        """
        git = git or GitFacade()
        return cls(git.repo_root(cwd), config, git)

    @property
    def workspace_dir(self) -> Path:
        return self.config.workspace_dir(self.repo_root)

    @property
    def default_base(self) -> str:
        """Trunk branch: configured ``default_base`` or auto-detected main/master."""
        if self.config.default_base:
            return self.config.default_base
        if self._default_base is None:
            self._default_base = self.git.default_branch(self.repo_root)
        return self._default_base

    # -- lookup -----------------------------------------------------------

    def list(self) -> list[Workspace]:
        try:
            worktrees = self.git.worktree_list(self.repo_root)
        except GitCommandError as exc:
            raise WorkspaceError(f"failed to list worktrees: {exc}") from exc

        ws_dir = self.workspace_dir
        workspaces: list[Workspace] = []
        for wt in worktrees:
            path = Path(wt.path)
            if wt.bare or not _is_within(path, ws_dir) or path.resolve() == ws_dir.resolve():
                continue
            modified = None
            try:
                modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            except OSError:
                pass
            workspaces.append(Workspace(name=path.name, path=path, branch=wt.branch, modified=modified))
        return workspaces

    def get(self, name: str) -> Workspace:
        for ws in self.list():
            if ws.name == name:
                return ws
        raise WorkspaceNotFoundError(name)

    def path_for(self, name: str) -> Path:
        return self.get(name).path

    # -- lifecycle --------------------------------------------------------

    def create(self, name: str, base: Optional[str] = None) -> Workspace:
        """Create a worktree at ``<workspace dir>/<name>`` on a new branch *name*.

        Raises:
            WorkspaceError: If the branch or directory already exists, or git fails.
        """
        base = base or self.default_base
        if self.git.branch_exists(self.repo_root, name):
            raise WorkspaceError(f"branch '{name}' already exists")

        path = self.workspace_dir / name
        if path.exists():
            raise WorkspaceError(f"directory '{path}' already exists")
        try:
            self.workspace_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceError(f"failed to create workspace directory: {exc}") from exc

        result = self.git.worktree_add(self.repo_root, path, name, base)
        if not result.ok:
            raise WorkspaceError(f"failed to create worktree: {summarize_output(result.output)}")

        if self.config.hooks.post_create:
            code = run_hook(self.config.hooks.post_create, path, name)
            if code != 0:
                logger.warning("post-create hook failed for {} (exit {})", name, code)

        logger.info("Created workspace {} (from {})", name, base)
        return Workspace(name=name, path=path, branch=name)

    def remove(self, name: str, *, force: bool = False, keep_branch: bool = False) -> None:
        """Remove the worktree and, unless *keep_branch*, its branch.

        Raises:
            WorkspaceNotFoundError: If no such workspace exists.
            WorkspaceError: If the worktree is dirty and *force* is not set, or git fails.
        """
        ws = self.get(name)
        try:
            dirty, status = self.git.has_uncommitted_changes(ws.path)
        except GitCommandError as exc:
            raise WorkspaceError(f"failed to check workspace status: {exc}") from exc
        if dirty and not force:
            raise WorkspaceError(
                f"workspace '{name}' has uncommitted changes:\n{status.rstrip()}"
            )

        if self.config.hooks.pre_remove:
            code = run_hook(self.config.hooks.pre_remove, ws.path, name)
            if code != 0:
                logger.warning("pre-remove hook failed for {} (exit {})", name, code)

        result = self.git.worktree_remove(self.repo_root, ws.path, force=force)
        if not result.ok:
            raise WorkspaceError(f"failed to remove worktree: {summarize_output(result.output)}")

        if not keep_branch:
            deleted = self.git.delete_branch(self.repo_root, ws.branch or name, force=force)
            if not deleted.ok:
                logger.warning("Failed to delete branch {}: {}", ws.branch or name, summarize_output(deleted.output))
        logger.info("Removed workspace {}", name)

    # -- maintenance ------------------------------------------------------

    def status(self) -> list[WorkspaceStatus]:
        """Branch position, pending changes and last commit of every workspace."""
        base = self.default_base
        statuses: list[WorkspaceStatus] = []
        for ws in self.list():
            entry = WorkspaceStatus(workspace=ws, commits_ahead=self.git.commits_ahead(ws.path, base))
            try:
                porcelain = self.git.status_porcelain(ws.path)
                entry.modified_files = len([line for line in porcelain.splitlines() if line.strip()])
            except GitCommandError as exc:
                logger.warning("Cannot read status of {}: {}", ws.name, exc)
            entry.last_commit = self.git.last_commit(ws.path)
            statuses.append(entry)
        return statuses

    def orphaned_dirs(self) -> list[Path]:
        """Directories under the workspace dir that git does not know as worktrees."""
        ws_dir = self.workspace_dir
        if not ws_dir.is_dir():
            return []
        try:
            worktrees = self.git.worktree_list(self.repo_root)
        except GitCommandError as exc:
            raise WorkspaceError(f"failed to list worktrees: {exc}") from exc
        known = {Path(wt.path).resolve() for wt in worktrees}
        known.add(self.repo_root.resolve())
        return sorted(p for p in ws_dir.iterdir() if p.is_dir() and p.resolve() not in known)

    def prune(self, *, dry_run: bool = False, remove_orphans: bool = True) -> PruneReport:
        """Drop stale worktree metadata and delete orphaned workspace directories.

        With *dry_run* nothing is changed; the report lists what would be removed.
        With ``remove_orphans=False`` only the metadata is pruned, so the caller
        can confirm before calling :meth:`remove_orphans`.

        Raises:
            WorkspaceError: If ``git worktree prune`` fails.
        """
        report = PruneReport(dry_run=dry_run)
        if not dry_run:
            result = self.git.worktree_prune(self.repo_root)
            if not result.ok:
                raise WorkspaceError(f"failed to prune worktrees: {summarize_output(result.output)}")
            report.metadata_pruned = True
        report.orphans = self.orphaned_dirs()
        if remove_orphans and not dry_run:
            self.remove_orphans(report)
        return report

    def remove_orphans(self, report: PruneReport) -> PruneReport:
        for path in report.orphans:
            try:
                shutil.rmtree(path)
            except OSError as exc:
                report.errors.append(f"{path}: {exc}")
                logger.warning("Failed to remove {}: {}", path, exc)
                continue
            report.removed.append(path)
            logger.info("Removed orphaned directory {}", path)
        return report
