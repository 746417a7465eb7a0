"""Launch the configured coding agent inside a workspace."""

from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import Optional

from loguru import logger

AGENT_NOT_FOUND = 127


class AgentLauncher:
    """Run the agent command as a blocking child process with inherited stdio.

    The operator interacts with the agent directly in the terminal; control
    returns when the agent exits.
    """

    def __init__(self, command: str) -> None:
        self.command = command

    def argv(self, prompt: Optional[str] = None) -> list[str]:
        args = shlex.split(self.command)
        if prompt:
            args.append(prompt)
        return args

    def launch(self, workspace: Path, prompt: Optional[str] = None) -> int:
        """Run the agent in *workspace* and return its exit code."""
        args = self.argv(prompt)
        if not args:
            logger.warning("No agent command configured; skipping launch in {}", workspace)
            return AGENT_NOT_FOUND
        logger.info("Launching agent '{}' in {}", args[0], workspace)
        try:
            proc = subprocess.run(args, cwd=workspace, check=False)
        except FileNotFoundError:
            logger.error("Agent command not found: {}", args[0])
            return AGENT_NOT_FOUND
        except OSError as exc:
            logger.error("Failed to launch agent {}: {}", args[0], exc)
            return AGENT_NOT_FOUND
        if proc.returncode != 0:
            logger.warning("Agent exited with code {}", proc.returncode)
        return proc.returncode
