"""Load optional configuration from ``<config dir>/config.yaml`` and the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .constants import (
    CONFIG_DIR_NAME,
    CONFIG_FILE,
    DEFAULT_AGENT_CMD,
    DEFAULT_RESOLVE_PROMPT,
    DEFAULT_WORKSPACE_DIR,
    ENV_AGENT_CMD,
    ENV_CONFIG_DIR,
    ENV_DEFAULT_BASE,
    ENV_DIRECTORY,
    ENV_NO_HOOKS,
    QUEUE_FILE,
)
from .io_utils import _load_yaml_with_error


@dataclass
class HooksConfig:
    post_create: str = ""
    pre_remove: str = ""


@dataclass
class WsConfig:
    """Resolved settings for workspaces, agents and hooks."""

    directory: str = DEFAULT_WORKSPACE_DIR
    default_base: str = ""  # empty means auto-detect (main or master)
    agent_cmd: str = DEFAULT_AGENT_CMD
    resolve_prompt: str = DEFAULT_RESOLVE_PROMPT
    hooks: HooksConfig = field(default_factory=HooksConfig)
    config_dir: Path = field(default_factory=lambda: config_dir())

    @property
    def queue_path(self) -> Path:
        return self.config_dir / QUEUE_FILE

    def workspace_dir(self, repo_root: Path) -> Path:
        """Resolve the workspace directory template against *repo_root*."""
        raw = self.directory.replace("{repo}", repo_root.name)
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = repo_root / path
        return Path(os.path.normpath(path))


def config_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """Return the per-user directory holding ``config.yaml`` and ``queue.json``."""
    env = os.environ if env is None else env
    override = env.get(ENV_CONFIG_DIR)
    if override:
        return Path(override).expanduser()
    xdg = env.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / CONFIG_DIR_NAME


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _str_setting(config: dict[str, Any], *keys: str) -> Optional[str]:
    raw = _get_nested(config, *keys)
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def load_config(
    env: Optional[Mapping[str, str]] = None,
    path: Optional[Path] = None,
) -> tuple[WsConfig, str | None]:
    """Load the optional config file and apply environment overrides.

    Args:
        env: Environment mapping (default: ``os.environ``).
        path: Explicit config file path (default: ``<config dir>/config.yaml``).

    Returns:
        A tuple of `(config, error_message)`. A missing file yields defaults and
        no error; an unreadable file yields defaults plus the error text.
    """
    env = os.environ if env is None else env
    cfg = WsConfig(config_dir=config_dir(env))
    path = path or cfg.config_dir / CONFIG_FILE

    data, err = _load_yaml_with_error(path, {})
    if not err:
        cfg.directory = _str_setting(data, "directory") or cfg.directory
        cfg.default_base = _str_setting(data, "default_base") or cfg.default_base
        cfg.agent_cmd = _str_setting(data, "agent_cmd") or cfg.agent_cmd
        cfg.resolve_prompt = _str_setting(data, "resolve_prompt") or cfg.resolve_prompt
        cfg.hooks.post_create = _str_setting(data, "hooks", "post_create") or ""
        cfg.hooks.pre_remove = _str_setting(data, "hooks", "pre_remove") or ""

    # Environment variables take priority over the file.
    if env.get(ENV_DIRECTORY):
        cfg.directory = env[ENV_DIRECTORY]
    if env.get(ENV_DEFAULT_BASE):
        cfg.default_base = env[ENV_DEFAULT_BASE]
    if env.get(ENV_AGENT_CMD):
        cfg.agent_cmd = env[ENV_AGENT_CMD]
    if env.get(ENV_NO_HOOKS) == "1":
        cfg.hooks = HooksConfig()

    return cfg, err
