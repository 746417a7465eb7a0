"""Tests for the workspace registry and the git facade."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from conftest import FakeGit, git_init, requires_git
from ws_queue.config import HooksConfig, WsConfig
from ws_queue.errors import NotAGitRepositoryError, WorkspaceError, WorkspaceNotFoundError
from ws_queue.fold import FoldOrchestrator, FoldOutcome
from ws_queue.git_coordinator import GitCoordinator
from ws_queue.git_utils import GitFacade, parse_worktree_porcelain
from ws_queue.workspace import WorkspaceManager

PORCELAIN = """\
worktree /repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /repo/.worktrees/repo/feat
HEAD 2222222222222222222222222222222222222222
branch refs/heads/feat

worktree /tmp/detached
HEAD 3333333333333333333333333333333333333333
detached
"""


class TestPorcelain:
    def test_parse(self) -> None:
        worktrees = parse_worktree_porcelain(PORCELAIN)
        assert [w.path for w in worktrees] == ["/repo", "/repo/.worktrees/repo/feat", "/tmp/detached"]
        assert worktrees[1].branch == "feat"
        assert worktrees[2].branch == ""
        assert not any(w.bare for w in worktrees)

    def test_bare(self) -> None:
        worktrees = parse_worktree_porcelain("worktree /srv/repo.git\nbare\n")
        assert len(worktrees) == 1 and worktrees[0].bare

    def test_empty(self) -> None:
        assert parse_worktree_porcelain("") == []


class TestGitFacade:
    def test_missing_binary_is_reported_not_raised(self, tmp_path: Path) -> None:
        result = GitFacade("definitely-not-git-xyz").run("status", cwd=tmp_path)
        assert result.returncode == 127
        assert not result.ok
        assert result.command == "git status"

    def test_repo_root_outside_repository(self, tmp_path: Path) -> None:
        with pytest.raises(NotAGitRepositoryError):
            GitFacade("definitely-not-git-xyz").repo_root(tmp_path)


class TestWorkspaceManager:
    def test_create_and_list(self, workspaces: WorkspaceManager, fake_git: FakeGit, config: WsConfig) -> None:
        ws = workspaces.create("feat")
        assert ws.path == Path(config.directory) / "feat"
        assert ("worktree", "add", "-b", "feat", str(ws.path), "main") in fake_git.commands()

        listed = workspaces.list()
        assert [w.name for w in listed] == ["feat"]
        assert listed[0].branch == "feat"
        assert listed[0].modified is not None
        assert workspaces.get("feat").path == ws.path

    def test_main_worktree_is_not_listed(self, workspaces: WorkspaceManager) -> None:
        assert workspaces.list() == []

    def test_create_rejects_existing_branch(self, workspaces: WorkspaceManager, fake_git: FakeGit) -> None:
        fake_git.branches.add("feat")
        with pytest.raises(WorkspaceError, match="branch 'feat' already exists"):
            workspaces.create("feat")
        assert not fake_git.ran("worktree", "add")

    def test_create_rejects_existing_directory(self, workspaces: WorkspaceManager, config: WsConfig) -> None:
        (Path(config.directory) / "feat").mkdir(parents=True)
        with pytest.raises(WorkspaceError, match="already exists"):
            workspaces.create("feat")

    def test_create_reports_git_failure(self, workspaces: WorkspaceManager, fake_git: FakeGit) -> None:
        fake_git.respond("worktree", "add", returncode=128, output="fatal: invalid reference: main")
        with pytest.raises(WorkspaceError, match="invalid reference"):
            workspaces.create("feat")

    def test_get_unknown(self, workspaces: WorkspaceManager) -> None:
        with pytest.raises(WorkspaceNotFoundError):
            workspaces.get("ghost")

    def test_remove_refuses_dirty_without_force(self, workspaces: WorkspaceManager, fake_git: FakeGit) -> None:
        workspaces.create("feat")
        fake_git.mark_dirty("feat")
        with pytest.raises(WorkspaceError, match="uncommitted changes"):
            workspaces.remove("feat")
        workspaces.remove("feat", force=True)
        assert workspaces.list() == []
        assert "feat" not in fake_git.branches

    def test_remove_keep_branch(self, workspaces: WorkspaceManager, fake_git: FakeGit) -> None:
        workspaces.create("feat")
        workspaces.remove("feat", keep_branch=True)
        assert "feat" in fake_git.branches

    def test_default_base_detected_when_unset(self, repo: Path, tmp_path: Path, fake_git: FakeGit) -> None:
        fake_git.branches = {"master"}
        manager = WorkspaceManager(repo, WsConfig(directory=str(tmp_path / "wt"), config_dir=tmp_path / "cfg"), fake_git)
        assert manager.default_base == "master"

    def test_hooks_run_in_workspace(self, repo: Path, tmp_path: Path, fake_git: FakeGit) -> None:
        marker = tmp_path / "hook.log"
        config = WsConfig(
            directory=str(tmp_path / "wt"),
            default_base="main",
            config_dir=tmp_path / "cfg",
            hooks=HooksConfig(
                post_create=f"echo created {{name}} >> {marker}",
                pre_remove=f"echo removing {{name}} >> {marker}",
            ),
        )
        manager = WorkspaceManager(repo, config, fake_git)
        manager.create("feat")
        manager.remove("feat")
        assert marker.read_text().splitlines() == ["created feat", "removing feat"]

    def test_failing_hook_does_not_abort_create(self, repo: Path, tmp_path: Path, fake_git: FakeGit) -> None:
        config = WsConfig(
            directory=str(tmp_path / "wt"),
            default_base="main",
            config_dir=tmp_path / "cfg",
            hooks=HooksConfig(post_create="exit 3"),
        )
        ws = WorkspaceManager(repo, config, fake_git).create("feat")
        assert ws.path.is_dir()

    def test_bare_entries_are_not_workspaces(self, workspaces: WorkspaceManager, fake_git: FakeGit, config: WsConfig) -> None:
        fake_git.respond("worktree", "list", output=f"worktree {config.directory}/mirror\nbare\n")
        assert workspaces.list() == []

    def test_status(self, workspaces: WorkspaceManager, fake_git: FakeGit) -> None:
        workspaces.create("clean")
        workspaces.create("busy")
        fake_git.mark_dirty("busy")
        fake_git.respond("log", "-1", output="add parser\x002 hours ago\n")

        statuses = {s.workspace.name: s for s in workspaces.status()}
        assert statuses["clean"].modified_files == 0
        assert statuses["busy"].modified_files == 1
        assert statuses["busy"].commits_ahead == 1
        assert statuses["busy"].last_commit == ("add parser", "2 hours ago")
        assert statuses["busy"].to_dict()["last_commit"] == {"subject": "add parser", "when": "2 hours ago"}

    def test_status_without_commit_info(self, workspaces: WorkspaceManager) -> None:
        workspaces.create("feat")
        [entry] = workspaces.status()
        assert entry.last_commit is None
        assert entry.to_dict()["last_commit"] is None

    def test_prune_dry_run_changes_nothing(self, workspaces: WorkspaceManager, fake_git: FakeGit, config: WsConfig) -> None:
        workspaces.create("feat")
        stale = Path(config.directory) / "stale"
        stale.mkdir()
        (Path(config.directory) / "notes.txt").write_text("not a directory\n")

        report = workspaces.prune(dry_run=True)
        assert report.orphans == [stale]
        assert report.removed == []
        assert not report.metadata_pruned
        assert not fake_git.ran("worktree", "prune")
        assert stale.is_dir()

    def test_prune_removes_orphans(self, workspaces: WorkspaceManager, fake_git: FakeGit, config: WsConfig) -> None:
        ws = workspaces.create("feat")
        stale = Path(config.directory) / "stale"
        stale.mkdir()

        report = workspaces.prune()
        assert fake_git.ran("worktree", "prune")
        assert report.metadata_pruned
        assert report.removed == [stale]
        assert not stale.exists()
        assert ws.path.is_dir()

    def test_prune_can_defer_orphan_removal(self, workspaces: WorkspaceManager, config: WsConfig) -> None:
        stale = Path(config.directory) / "stale"
        stale.mkdir(parents=True)
        report = workspaces.prune(remove_orphans=False)
        assert report.orphans == [stale] and stale.is_dir()
        workspaces.remove_orphans(report)
        assert report.removed == [stale] and not stale.exists()

    def test_prune_without_workspace_dir(self, workspaces: WorkspaceManager) -> None:
        report = workspaces.prune()
        assert report.orphans == []

    def test_prune_reports_git_failure(self, workspaces: WorkspaceManager, fake_git: FakeGit) -> None:
        fake_git.respond("worktree", "prune", returncode=1, output="fatal: boom")
        with pytest.raises(WorkspaceError, match="boom"):
            workspaces.prune()


class TestGitCoordinator:
    def test_same_repo_shares_lock(self, tmp_path: Path) -> None:
        coordinator = GitCoordinator()
        assert coordinator._lock_for(tmp_path) is coordinator._lock_for(tmp_path / ".")
        assert coordinator._lock_for(tmp_path) is not coordinator._lock_for(tmp_path / "other")

    def test_lock_is_reentrant(self, tmp_path: Path) -> None:
        coordinator = GitCoordinator()
        with coordinator.locked(tmp_path, "outer"):
            with coordinator.locked(tmp_path, "inner"):
                entered = True
        assert entered


def _git(path: Path, *args: str) -> str:
    return subprocess.run(["git", *args], cwd=path, check=True, capture_output=True, text=True).stdout


@requires_git
class TestRealGit:
    @pytest.fixture
    def real_repo(self, tmp_path: Path) -> Path:
        path = tmp_path / "project"
        path.mkdir()
        git_init(path)
        return path

    @pytest.fixture
    def manager(self, real_repo: Path, tmp_path: Path) -> WorkspaceManager:
        config = WsConfig(directory=str(tmp_path / "wt" / "{repo}"), config_dir=tmp_path / "cfg")
        return WorkspaceManager.discover(config, cwd=real_repo)

    def test_discover_and_default_base(self, manager: WorkspaceManager, real_repo: Path, tmp_path: Path) -> None:
        assert manager.repo_root.resolve() == real_repo.resolve()
        assert manager.default_base == "main"
        assert manager.workspace_dir == tmp_path / "wt" / "project"

    def test_fold_fast_forwards_trunk(self, manager: WorkspaceManager, real_repo: Path) -> None:
        ws = manager.create("feat")
        (ws.path / "feature.txt").write_text("hello\n")
        _git(ws.path, "add", "-A")
        _git(ws.path, "commit", "-m", "add feature")

        result = FoldOrchestrator(manager, coordinator=GitCoordinator()).fold("feat")

        assert result.outcome == FoldOutcome.SUCCESS, result.error_text
        assert (real_repo / "feature.txt").read_text() == "hello\n"
        assert not ws.path.exists()
        assert manager.list() == []
        assert "add feature" in _git(real_repo, "log", "--oneline", "-1")

    def test_fold_reports_conflicts(self, manager: WorkspaceManager, real_repo: Path) -> None:
        ws = manager.create("feat")
        (ws.path / "README.md").write_text("# from workspace\n")
        _git(ws.path, "commit", "-am", "workspace edit")
        (real_repo / "README.md").write_text("# from trunk\n")
        _git(real_repo, "commit", "-am", "trunk edit")

        folder = FoldOrchestrator(manager, coordinator=GitCoordinator())
        result = folder.fold("feat")

        assert result.outcome == FoldOutcome.CONFLICT
        assert result.conflicted_files == ["README.md"]
        assert manager.git.rebase_in_progress(ws.path)

        # Resolve, stage, then retry: the fold continues the rebase.
        (ws.path / "README.md").write_text("# merged\n")
        _git(ws.path, "add", "README.md")
        retried = folder.fold("feat")
        assert retried.outcome == FoldOutcome.SUCCESS, retried.error_text
        assert (real_repo / "README.md").read_text() == "# merged\n"
