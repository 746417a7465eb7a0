"""Shared fixtures: an in-memory git stand-in and a fully wired engine."""

from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

import pytest
from loguru import logger

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from ws_queue.agent import AgentLauncher  # noqa: E402
from ws_queue.config import WsConfig  # noqa: E402
from ws_queue.git_utils import GitFacade, GitResult  # noqa: E402
from ws_queue.task_engine import QueueStore, TaskEngine  # noqa: E402
from ws_queue.workspace import WorkspaceManager  # noqa: E402


class FakeGit(GitFacade):
    """Answer git invocations from in-memory state and record every call.

    Scripted responses registered with :meth:`respond` win over the default
    behaviour; they match on a prefix of the argument list.
    """

    def __init__(self, repo: Path) -> None:
        super().__init__("git")
        self.repo = repo
        self.calls: list[tuple[tuple[str, ...], Path, Optional[dict[str, str]]]] = []
        self.responses: dict[tuple[str, ...], tuple[int, str]] = {}
        self.worktrees: dict[str, str] = {}
        self.branches: set[str] = {"main"}
        self.dirty: set[str] = set()
        self.unmerged: dict[str, list[str]] = {}
        self.rebasing: set[str] = set()

    # -- test helpers -----------------------------------------------------

    def respond(self, *prefix: str, returncode: int = 0, output: str = "") -> None:
        self.responses[prefix] = (returncode, output)

    def clear_responses(self) -> None:
        self.responses.clear()

    def path_of(self, branch: str) -> str:
        for path, name in self.worktrees.items():
            if name == branch:
                return path
        raise KeyError(branch)

    def mark_dirty(self, branch: str) -> None:
        self.dirty.add(self.path_of(branch))

    def commands(self) -> list[tuple[str, ...]]:
        return [args for args, _, _ in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(args[: len(prefix)] == prefix for args in self.commands())

    # -- GitFacade --------------------------------------------------------

    def rebase_in_progress(self, workspace: Path) -> bool:
        return str(workspace) in self.rebasing

    def run(self, *args: str, cwd: Path, env: Optional[dict[str, str]] = None) -> GitResult:
        self.calls.append((args, Path(cwd), env))
        for prefix, (code, output) in self.responses.items():
            if args[: len(prefix)] == prefix:
                return GitResult(list(args), code, output)
        return self._default(args, Path(cwd))

    def _default(self, args: tuple[str, ...], cwd: Path) -> GitResult:
        ok = GitResult(list(args), 0, "")
        if args[:2] == ("rev-parse", "--show-toplevel"):
            return GitResult(list(args), 0, f"{self.repo}\n")
        if args[:2] == ("rev-parse", "--verify"):
            name = args[-1].removeprefix("refs/heads/")
            return GitResult(list(args), 0 if name in self.branches else 1, "")
        if args[:2] == ("config", "--get"):
            return GitResult(list(args), 1, "")
        if args[:2] == ("worktree", "list"):
            records = [f"worktree {self.repo}\nHEAD 0000000\nbranch refs/heads/main\n"]
            for path, branch in self.worktrees.items():
                records.append(f"worktree {path}\nHEAD 1111111\nbranch refs/heads/{branch}\n")
            return GitResult(list(args), 0, "\n".join(records))
        if args[:2] == ("worktree", "add"):
            branch, path = args[3], Path(args[4])
            path.mkdir(parents=True, exist_ok=True)
            self.worktrees[str(path)] = branch
            self.branches.add(branch)
            return ok
        if args[:2] == ("worktree", "remove"):
            path = args[2]
            self.worktrees.pop(path, None)
            self.dirty.discard(path)
            shutil.rmtree(path, ignore_errors=True)
            return ok
        if args[0] == "branch":
            self.branches.discard(args[2])
            return ok
        if args[0] == "status":
            return GitResult(list(args), 0, " M file.py\n" if str(cwd) in self.dirty else "")
        if args[:2] == ("diff", "--name-only"):
            return GitResult(list(args), 0, "".join(f"{f}\n" for f in self.unmerged.get(str(cwd), [])))
        if args[:2] == ("diff", "--stat"):
            stat = " file.py | 2 +-\n 1 file changed\n" if str(cwd) in self.dirty else ""
            return GitResult(list(args), 0, stat)
        if args[:2] == ("rev-list", "--count"):
            return GitResult(list(args), 0, "1\n")
        if args[0] == "commit":
            self.dirty.discard(str(cwd))
            return ok
        return ok


class FakeAgent(AgentLauncher):
    def __init__(self, returncode: int = 0) -> None:
        super().__init__("fake-agent")
        self.returncode = returncode
        self.launches: list[tuple[Path, Optional[str]]] = []

    def launch(self, workspace: Path, prompt: Optional[str] = None) -> int:
        self.launches.append((workspace, prompt))
        return self.returncode


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    # Sinks added by configure_logging point at per-test capture streams.
    logger.remove()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path) -> WsConfig:
    return WsConfig(
        directory=str(tmp_path / "worktrees"),
        default_base="main",
        config_dir=tmp_path / "cfg",
    )


@pytest.fixture
def fake_git(repo: Path) -> FakeGit:
    return FakeGit(repo)


@pytest.fixture
def workspaces(repo: Path, config: WsConfig, fake_git: FakeGit) -> WorkspaceManager:
    return WorkspaceManager(repo, config, fake_git)


@pytest.fixture
def store(config: WsConfig) -> QueueStore:
    return QueueStore(config.queue_path)


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def engine(store: QueueStore, config: WsConfig, workspaces: WorkspaceManager, agent: FakeAgent) -> TaskEngine:
    return TaskEngine(store, config, workspaces, agent=agent)


def _git(path: Path, *args: str) -> str:
    proc = subprocess.run(["git", *args], cwd=path, check=True, capture_output=True, text=True)
    return proc.stdout


def git_init(path: Path) -> None:
    """Initialize a git repo on ``main`` with an initial commit."""
    _git(path, "init")
    _git(path, "config", "user.email", "test@test.com")
    _git(path, "config", "user.name", "Test")
    (path / "README.md").write_text("# init\n")
    _git(path, "add", "-A")
    _git(path, "commit", "-m", "initial")
    _git(path, "branch", "-M", "main")


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
