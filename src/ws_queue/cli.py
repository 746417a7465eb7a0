"""Command-line front-end for the workspace task queue."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Optional

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import WsConfig, load_config
from .constants import ENV_LOG_LEVEL
from .errors import NotAGitRepositoryError, PersistenceError, WsError
from .fold import FoldOutcome, FoldResult
from .logging_utils import configure_logging, pretty
from .task_engine import FoldReport, QueueStore, Task, TaskEngine, TaskStatus, ValidationReport
from .utils import _format_local
from .workspace import WorkspaceManager

_STATUS_STYLES = {
    TaskStatus.QUEUED: "dim",
    TaskStatus.RUNNING: "yellow",
    TaskStatus.VALIDATING: "cyan",
    TaskStatus.CONFLICT: "magenta",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
}


class _Context:
    """Objects shared by one command invocation."""

    def __init__(self, args: argparse.Namespace) -> None:
        self.args = args
        self.console = Console(highlight=False)
        self.config = _load_config()
        self.store = QueueStore(self.config.queue_path)
        self._workspaces: Optional[WorkspaceManager] = None
        try:
            self._workspaces = WorkspaceManager.discover(self.config)
        except NotAGitRepositoryError:
            # Queue bookkeeping (add/list/remove/clear) works outside a repository.
            logger.debug("Not inside a git repository; workspace commands are unavailable")
        self.engine = TaskEngine(self.store, self.config, self._workspaces)

    @property
    def as_json(self) -> bool:
        return bool(getattr(self.args, "json", False))

    def emit(self, payload: Any) -> None:
        sys.stdout.write(pretty(payload) + "\n")


def _load_config() -> WsConfig:
    config, err = load_config()
    if err:
        logger.warning("Ignoring config file: {}", err)
    return config


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _status_text(status: TaskStatus) -> str:
    style = _STATUS_STYLES.get(status, "")
    return f"[{style}]{status.value}[/{style}]" if style else status.value


def _task_table(tasks: list[Task]) -> Table:
    table = Table(show_header=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Description")
    for task in tasks:
        table.add_row(
            task.id,
            task.name,
            _status_text(task.status),
            _format_local(task.created_at),
            task.description,
        )
    return table


def _print_task(console: Console, task: Task) -> None:
    table = Table(show_header=False, box=None)
    table.add_row("ID:", task.id)
    table.add_row("Name:", task.name)
    table.add_row("Status:", _status_text(task.status))
    table.add_row("Created:", _format_local(task.created_at))
    if task.started_at:
        table.add_row("Started:", _format_local(task.started_at))
    if task.completed_at:
        table.add_row("Completed:", _format_local(task.completed_at))
    if task.description:
        table.add_row("Description:", task.description)
    console.print(table)
    if task.conflicted_files:
        console.print(Panel("\n".join(task.conflicted_files), title="Conflicted files", border_style="magenta"))
    if task.error:
        console.print(Panel(escape(task.error), title="Error", border_style="red"))


def _print_fold(console: Console, fold: FoldResult) -> None:
    if fold.ok:
        console.print(f"[green]✓[/green] {fold.message}")
        if fold.workspace_removed:
            console.print(f"Removed workspace {fold.name}")
    elif fold.outcome == FoldOutcome.CONFLICT:
        console.print(f"[magenta]Conflict:[/magenta] {escape(fold.message)}")
        if fold.conflicted_files:
            console.print(Panel("\n".join(fold.conflicted_files), title="Conflicted files", border_style="magenta"))
    else:
        console.print(f"[red]✗ {escape(fold.message)}[/red]")
    if fold.cleanup_error:
        console.print(f"[yellow]warning:[/yellow] {escape(fold.cleanup_error)}")


def _print_fold_report(ctx: _Context, report: FoldReport) -> int:
    if ctx.as_json:
        ctx.emit(report.to_dict())
    else:
        for note in report.messages:
            ctx.console.print(f"[dim]{escape(note)}[/dim]")
        if report.fold is not None:
            _print_fold(ctx.console, report.fold)
        elif report.error:
            ctx.console.print(f"[red]✗ {escape(report.error)}[/red]")
        ctx.console.print(f"Task {report.task.name} is now {_status_text(report.status)}")
        if report.status == TaskStatus.CONFLICT:
            ctx.console.print(
                f"Resolve the conflicts, then run [bold]ws-queue retry {report.task.name}[/bold] "
                f"or [bold]ws-queue resolve {report.task.name}[/bold] to let the agent try."
            )
    return 0 if report.status == TaskStatus.COMPLETED else 1


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def _cmd_add(ctx: _Context) -> int:
    task = ctx.engine.add(ctx.args.name, ctx.args.description or "")
    if ctx.as_json:
        ctx.emit({"task": task.to_dict()})
    else:
        ctx.console.print(f"Queued [bold]{task.name}[/bold] ({task.id})")
    return 0


def _cmd_list(ctx: _Context) -> int:
    tasks = ctx.engine.list()
    if ctx.args.status:
        tasks = [t for t in tasks if t.status.value == ctx.args.status]
    if ctx.as_json:
        ctx.emit({"tasks": [t.to_dict() for t in tasks]})
    elif not tasks:
        ctx.console.print("No tasks.")
    else:
        ctx.console.print(_task_table(tasks))
    return 0


def _cmd_show(ctx: _Context) -> int:
    task = ctx.engine.find(ctx.args.task)
    if ctx.as_json:
        ctx.emit({"task": task.to_dict()})
    else:
        _print_task(ctx.console, task)
    return 0


def _cmd_next(ctx: _Context) -> int:
    task = ctx.engine.next_pending()
    if ctx.as_json:
        ctx.emit({"task": task.to_dict() if task else None})
    elif task is None:
        ctx.console.print("No queued tasks.")
    else:
        _print_task(ctx.console, task)
    return 0


def _cmd_start(ctx: _Context) -> int:
    launch = not ctx.args.no_agent
    if ctx.args.task:
        task = ctx.engine.start(ctx.engine.find(ctx.args.task).id, launch_agent=launch)
    else:
        task = ctx.engine.process_next(launch_agent=launch)
        if task is None:
            if ctx.as_json:
                ctx.emit({"task": None})
            else:
                ctx.console.print("No queued tasks.")
            return 0
    if ctx.as_json:
        ctx.emit({"task": task.to_dict()})
    elif task.status == TaskStatus.FAILED:
        ctx.console.print(f"[red]✗ {escape(task.error or '')}[/red]")
    else:
        ctx.console.print(f"Task {task.name} is now {_status_text(task.status)}")
    return 1 if task.status == TaskStatus.FAILED else 0


def _cmd_validate(ctx: _Context) -> int:
    report: ValidationReport = ctx.engine.validate(ctx.engine.find(ctx.args.task).id)
    if ctx.as_json:
        ctx.emit(report.to_dict())
    elif report.task.status == TaskStatus.FAILED:
        ctx.console.print(f"[red]✗ {escape(report.task.error or '')}[/red]")
    else:
        if report.summary:
            ctx.console.print(Panel(escape(report.summary), title=f"Changes in {report.task.name}"))
        elif report.commits_ahead:
            ctx.console.print(f"No uncommitted changes; {report.commits_ahead} commit(s) ahead of trunk.")
        else:
            ctx.console.print("[yellow]No changes found in the workspace.[/yellow]")
        ctx.console.print(
            f"Run [bold]ws-queue commit {report.task.name} -m MESSAGE[/bold] to fold, "
            f"or [bold]ws-queue reject {report.task.name}[/bold] to keep working."
        )
    return 1 if report.task.status == TaskStatus.FAILED else 0


def _cmd_reject(ctx: _Context) -> int:
    task = ctx.engine.reject(ctx.engine.find(ctx.args.task).id)
    if ctx.as_json:
        ctx.emit({"task": task.to_dict()})
    else:
        ctx.console.print(f"Task {task.name} is back to {_status_text(task.status)}")
    return 0


def _cmd_commit(ctx: _Context) -> int:
    task = ctx.engine.find(ctx.args.task)
    report = ctx.engine.commit_and_fold(task.id, ctx.args.message, keep_workspace=ctx.args.keep)
    return _print_fold_report(ctx, report)


def _cmd_retry(ctx: _Context) -> int:
    task = ctx.engine.find(ctx.args.task)
    report = ctx.engine.retry_fold(task.id, keep_workspace=ctx.args.keep)
    return _print_fold_report(ctx, report)


def _cmd_resolve(ctx: _Context) -> int:
    task = ctx.engine.find(ctx.args.task)
    code = ctx.engine.auto_resolve(task.id)
    task = ctx.engine.get(task.id)
    if ctx.as_json:
        ctx.emit({"task": task.to_dict(), "agent_exit_code": code})
    else:
        if task.conflicted_files:
            ctx.console.print(Panel("\n".join(task.conflicted_files), title="Still conflicted", border_style="magenta"))
        ctx.console.print(f"Agent exited with code {code}. Run [bold]ws-queue retry {task.name}[/bold] to fold.")
    return 0 if code == 0 else 1


def _cmd_remove(ctx: _Context) -> int:
    task = ctx.engine.remove(ctx.engine.find(ctx.args.task).id)
    if ctx.as_json:
        ctx.emit({"removed": task.to_dict()})
    else:
        ctx.console.print(f"Removed task {task.name} ({task.id})")
    return 0


def _cmd_clear(ctx: _Context) -> int:
    removed = ctx.engine.clear_terminal_tasks()
    if ctx.as_json:
        ctx.emit({"removed": removed})
    else:
        ctx.console.print(f"Cleared {removed} finished task(s)")
    return 0


def _cmd_fold(ctx: _Context) -> int:
    result = ctx.engine.fold_workspace(ctx.args.name, keep_workspace=ctx.args.keep)
    if ctx.as_json:
        ctx.emit(result.to_dict())
    else:
        _print_fold(ctx.console, result)
    return 0 if result.ok else 1


def _cmd_status(ctx: _Context) -> int:
    statuses = ctx.engine.workspaces.status()
    if ctx.as_json:
        ctx.emit({"trunk": ctx.engine.workspaces.default_base, "workspaces": [s.to_dict() for s in statuses]})
        return 0
    if not statuses:
        ctx.console.print("No workspaces found.")
        return 0
    table = Table(show_header=True)
    table.add_column("Name", style="bold")
    table.add_column("Branch")
    table.add_column("Ahead", justify="right")
    table.add_column("Changes")
    table.add_column("Last commit")
    for entry in statuses:
        if entry.modified_files is None:
            changes = "[dim]unknown[/dim]"
        elif entry.modified_files:
            changes = f"[yellow]{entry.modified_files} file(s) modified[/yellow]"
        else:
            changes = "[green]clean[/green]"
        last = ""
        if entry.last_commit:
            subject, when = entry.last_commit
            if len(subject) > 40:
                subject = subject[:37] + "..."
            last = f"{escape(subject)} ({when})"
        table.add_row(entry.workspace.name, entry.workspace.branch, str(entry.commits_ahead), changes, last)
    ctx.console.print(table)
    return 0


def _cmd_prune(ctx: _Context) -> int:
    workspaces = ctx.engine.workspaces
    if ctx.args.dry_run or ctx.args.yes or ctx.as_json:
        report = workspaces.prune(dry_run=ctx.args.dry_run, remove_orphans=ctx.args.yes)
    else:
        report = workspaces.prune(remove_orphans=False)
        if report.orphans:
            for path in report.orphans:
                ctx.console.print(f"  {path}")
            answer = ctx.console.input("Remove orphaned directories? [y/N] ").strip().lower()
            if answer in ("y", "yes"):
                workspaces.remove_orphans(report)
            else:
                ctx.console.print("Aborted.")

    if ctx.as_json:
        ctx.emit(report.to_dict())
    else:
        if report.metadata_pruned:
            ctx.console.print("Pruned git worktree metadata")
        if not report.orphans:
            ctx.console.print("No orphaned directories found.")
        elif report.dry_run:
            ctx.console.print("Would remove:")
            for path in report.orphans:
                ctx.console.print(f"  {path}")
        for path in report.removed:
            ctx.console.print(f"Removed {path}")
        for error in report.errors:
            ctx.console.print(f"[red]✗ {escape(error)}[/red]")
    return 1 if report.errors else 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ws-queue",
        description="Queue coding tasks, run each in its own git worktree, and fold the result into trunk",
    )
    parser.add_argument("--log-level", default=None, help=f"Log level (default: ${ENV_LOG_LEVEL} or WARNING)")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", parents=[common], help="Queue a new task")
    add.add_argument("name", help="Task name; also the workspace directory and branch name")
    add.add_argument("-d", "--description", default="")
    add.set_defaults(func=_cmd_add)

    lst = subparsers.add_parser("list", parents=[common], help="List tasks in queue order")
    lst.add_argument("--status", default=None, choices=[s.value for s in TaskStatus])
    lst.set_defaults(func=_cmd_list)

    show = subparsers.add_parser("show", parents=[common], help="Show one task")
    show.add_argument("task", help="Task id, id prefix or name")
    show.set_defaults(func=_cmd_show)

    nxt = subparsers.add_parser("next", parents=[common], help="Show the next queued task")
    nxt.set_defaults(func=_cmd_next)

    start = subparsers.add_parser("start", parents=[common], help="Create the workspace and launch the agent")
    start.add_argument("task", nargs="?", default=None, help="Task to start (default: next queued)")
    start.add_argument("--no-agent", action="store_true", help="Create the workspace without launching the agent")
    start.set_defaults(func=_cmd_start)

    validate = subparsers.add_parser("validate", parents=[common], help="Review the changes of a running task")
    validate.add_argument("task")
    validate.set_defaults(func=_cmd_validate)

    reject = subparsers.add_parser("reject", parents=[common], help="Send a validating task back to running")
    reject.add_argument("task")
    reject.set_defaults(func=_cmd_reject)

    commit = subparsers.add_parser("commit", parents=[common], help="Commit a validated task and fold it into trunk")
    commit.add_argument("task")
    commit.add_argument("-m", "--message", required=True)
    commit.add_argument("--keep", action="store_true", help="Keep the workspace after a successful fold")
    commit.set_defaults(func=_cmd_commit)

    retry = subparsers.add_parser("retry", parents=[common], help="Retry the fold of a conflicted task")
    retry.add_argument("task")
    retry.add_argument("--keep", action="store_true", help="Keep the workspace after a successful fold")
    retry.set_defaults(func=_cmd_retry)

    resolve = subparsers.add_parser("resolve", parents=[common], help="Launch the agent to resolve conflicts")
    resolve.add_argument("task")
    resolve.set_defaults(func=_cmd_resolve)

    remove = subparsers.add_parser("remove", parents=[common], help="Remove a task from the queue")
    remove.add_argument("task")
    remove.set_defaults(func=_cmd_remove)

    clear = subparsers.add_parser("clear", parents=[common], help="Remove completed and failed tasks")
    clear.set_defaults(func=_cmd_clear)

    fold = subparsers.add_parser("fold", parents=[common], help="Fold a workspace into trunk without a task")
    fold.add_argument("name", help="Workspace name")
    fold.add_argument("--keep", action="store_true", help="Keep the workspace after a successful fold")
    fold.set_defaults(func=_cmd_fold)

    status = subparsers.add_parser("status", parents=[common], help="Show the state of every workspace")
    status.set_defaults(func=_cmd_status)

    prune = subparsers.add_parser("prune", parents=[common], help="Clean up stale worktree metadata and orphaned directories")
    prune.add_argument("--dry-run", action="store_true", help="Show what would be removed")
    prune.add_argument("--yes", action="store_true", help="Remove orphaned directories without asking")
    prune.set_defaults(func=_cmd_prune)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or os.environ.get(ENV_LOG_LEVEL) or "WARNING")

    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1

    err_console = Console(stderr=True, highlight=False)
    try:
        return int(handler(_Context(args)) or 0)
    except (PersistenceError, NotAGitRepositoryError) as exc:
        err_console.print(f"[red]error:[/red] {escape(str(exc))}")
        return 2
    except WsError as exc:
        err_console.print(f"[red]error:[/red] {escape(str(exc))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
