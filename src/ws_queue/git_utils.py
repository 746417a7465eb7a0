"""Provide the git facade used by the workspace registry and the fold orchestrator.

Every mutating call returns a :class:`GitResult` instead of raising, so callers
can classify failures from the captured output. Queries whose failure leaves
the caller unable to continue raise :class:`GitCommandError`.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from .errors import GitCommandError, NotAGitRepositoryError


@dataclass
class GitResult:
    """Outcome of one git invocation; ``output`` is stdout followed by stderr."""

    args: list[str]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return "git " + " ".join(self.args)


@dataclass
class Worktree:
    path: str
    branch: str = ""
    bare: bool = False


def parse_worktree_porcelain(output: str) -> list[Worktree]:
    """Parse ``git worktree list --porcelain`` output."""
    worktrees: list[Worktree] = []
    current: Optional[Worktree] = None
    for line in output.splitlines():
        if not line.strip():
            if current is not None:
                worktrees.append(current)
                current = None
            continue
        if line.startswith("worktree "):
            if current is not None:
                worktrees.append(current)
            current = Worktree(path=line[len("worktree "):])
        elif current is None:
            continue
        elif line.startswith("branch "):
            current.branch = line[len("branch "):].removeprefix("refs/heads/")
        elif line == "bare":
            current.bare = True
    # No trailing blank line after the last record.
    if current is not None:
        worktrees.append(current)
    return worktrees


class GitFacade:
    """Thin synchronous wrapper around the ``git`` executable."""

    def __init__(self, git: str = "git") -> None:
        self.git = git

    def run(self, *args: str, cwd: Path, env: Optional[dict[str, str]] = None) -> GitResult:
        run_env = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)
        logger.debug("git {} (cwd={})", " ".join(args), cwd)
        try:
            proc = subprocess.run(
                [self.git, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False,
                env=run_env,
            )
        except OSError as exc:
            return GitResult(list(args), 127, f"{self.git}: {exc}")
        output = (proc.stdout or "") + (proc.stderr or "")
        return GitResult(list(args), proc.returncode, output)

    def _query(self, *args: str, cwd: Path) -> str:
        result = self.run(*args, cwd=cwd)
        if not result.ok:
            raise GitCommandError(list(args), result.output)
        return result.output

    # -- repository -------------------------------------------------------

    def repo_root(self, cwd: Optional[Path] = None) -> Path:
        cwd = cwd or Path.cwd()
        result = self.run("rev-parse", "--show-toplevel", cwd=cwd)
        if not result.ok or not result.output.strip():
            raise NotAGitRepositoryError(str(cwd))
        return Path(result.output.strip().splitlines()[0])

    def default_branch(self, repo: Path) -> str:
        """Return ``init.defaultBranch`` if that branch exists, else ``main`` or ``master`` if present."""
        configured = self.run("config", "--get", "init.defaultBranch", cwd=repo)
        candidates = ["main", "master"]
        if configured.ok and configured.output.strip():
            candidates.insert(0, configured.output.strip())
        for candidate in candidates:
            if self.run("rev-parse", "--verify", "--quiet", candidate, cwd=repo).ok:
                return candidate
        return "main"

    def branch_exists(self, repo: Path, name: str) -> bool:
        return self.run("rev-parse", "--verify", "--quiet", f"refs/heads/{name}", cwd=repo).ok

    # -- worktrees --------------------------------------------------------

    def worktree_add(self, repo: Path, path: Path, branch: str, base: str) -> GitResult:
        return self.run("worktree", "add", "-b", branch, str(path), base, cwd=repo)

    def worktree_remove(self, repo: Path, path: Path, *, force: bool = False) -> GitResult:
        args = ["worktree", "remove", str(path)]
        if force:
            args.append("--force")
        return self.run(*args, cwd=repo)

    def worktree_list(self, repo: Path) -> list[Worktree]:
        return parse_worktree_porcelain(self._query("worktree", "list", "--porcelain", cwd=repo))

    def delete_branch(self, repo: Path, name: str, *, force: bool = False) -> GitResult:
        return self.run("branch", "-D" if force else "-d", name, cwd=repo)

    def worktree_prune(self, repo: Path) -> GitResult:
        return self.run("worktree", "prune", cwd=repo)

    # -- integration ------------------------------------------------------

    def fetch(self, repo: Path, remote: str, branch: str) -> GitResult:
        return self.run("fetch", remote, branch, cwd=repo)

    def rebase(self, workspace: Path, onto: str) -> GitResult:
        return self.run("rebase", onto, cwd=workspace)

    def rebase_continue(self, workspace: Path) -> GitResult:
        # GIT_EDITOR=true accepts the existing commit messages without opening an editor.
        return self.run("rebase", "--continue", cwd=workspace, env={"GIT_EDITOR": "true"})

    def rebase_in_progress(self, workspace: Path) -> bool:
        for marker in ("rebase-merge", "rebase-apply"):
            result = self.run("rev-parse", "--git-path", marker, cwd=workspace)
            if not result.ok:
                return False
            marker_path = Path(result.output.strip())
            if not marker_path.is_absolute():
                marker_path = workspace / marker_path
            if marker_path.exists():
                return True
        return False

    def checkout(self, repo: Path, branch: str) -> GitResult:
        return self.run("checkout", branch, cwd=repo)

    def merge_ff_only(self, repo: Path, branch: str) -> GitResult:
        return self.run("merge", "--ff-only", branch, cwd=repo)

    # -- working tree state -----------------------------------------------

    def status_porcelain(self, workspace: Path) -> str:
        return self._query("status", "--porcelain", cwd=workspace)

    def has_uncommitted_changes(self, workspace: Path) -> tuple[bool, str]:
        status = self.status_porcelain(workspace)
        return bool(status.strip()), status

    def status_short(self, workspace: Path) -> str:
        return self._query("status", "--short", cwd=workspace)

    def diff_stat(self, workspace: Path) -> str:
        # HEAD covers both staged and unstaged changes to tracked files.
        result = self.run("diff", "--stat", "HEAD", cwd=workspace)
        return result.output if result.ok else ""

    def commits_ahead(self, workspace: Path, base: str) -> int:
        result = self.run("rev-list", "--count", f"{base}..HEAD", cwd=workspace)
        if not result.ok:
            return 0
        try:
            return int(result.output.strip() or 0)
        except ValueError:
            return 0

    def last_commit(self, workspace: Path) -> Optional[tuple[str, str]]:
        """Return the subject and relative date of HEAD, or None."""
        result = self.run("log", "-1", "--format=%s%x00%cr", cwd=workspace)
        subject, sep, when = result.output.strip().partition("\x00")
        if not result.ok or not sep:
            return None
        return subject, when

    def conflicted_files(self, workspace: Path) -> list[str]:
        result = self.run("diff", "--name-only", "--diff-filter=U", cwd=workspace)
        if not result.ok:
            return []
        return [line.strip() for line in result.output.splitlines() if line.strip()]

    def add_all(self, workspace: Path) -> GitResult:
        return self.run("add", "-A", cwd=workspace)

    def commit(self, workspace: Path, message: str) -> GitResult:
        return self.run("commit", "-m", message, cwd=workspace)
