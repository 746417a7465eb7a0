"""Shared constants for the workspace task queue."""

from __future__ import annotations

CONFIG_DIR_NAME = "ws"
CONFIG_FILE = "config.yaml"
QUEUE_FILE = "queue.json"

DEFAULT_WORKSPACE_DIR = ".worktrees/{repo}"
DEFAULT_AGENT_CMD = "claude"
DEFAULT_REMOTE = "origin"
DEFAULT_RESOLVE_PROMPT = (
    "A rebase onto {base} stopped with merge conflicts in this workspace. "
    "Resolve the conflicted files, stage them, and run `git rebase --continue` "
    "until the rebase finishes."
)

ENV_CONFIG_DIR = "WS_CONFIG_DIR"
ENV_DIRECTORY = "WS_DIRECTORY"
ENV_DEFAULT_BASE = "WS_DEFAULT_BASE"
ENV_AGENT_CMD = "WS_AGENT_CMD"
ENV_NO_HOOKS = "WS_NO_HOOKS"
ENV_LOG_LEVEL = "WS_LOG_LEVEL"

# Captured git output stored on a task is capped at this many characters.
MAX_ERROR_CHARS = 4000
