"""Serialize multi-step git sequences per repository.

A fold runs fetch, rebase, checkout and merge as one unit. Two folds against the
same repository must not interleave, even when a front-end runs them on worker
threads, so each repository root gets its own re-entrant lock.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from loguru import logger


class GitCoordinator:
    """Hand out one re-entrant lock per repository root."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, repo_root: Path) -> threading.RLock:
        key = str(repo_root.resolve())
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def locked(self, repo_root: Path, operation_name: str = "git operation") -> Iterator[None]:
        """Hold the repository lock for the duration of the block."""
        thread_id = threading.current_thread().name
        lock = self._lock_for(repo_root)
        logger.debug("Thread {} waiting for git lock ({})", thread_id, operation_name)
        with lock:
            logger.debug("Thread {} acquired git lock ({})", thread_id, operation_name)
            try:
                yield
            finally:
                logger.debug("Thread {} releasing git lock ({})", thread_id, operation_name)


# Global instance
_git_coordinator = GitCoordinator()


def get_git_coordinator() -> GitCoordinator:
    """Get the process-wide git coordinator."""
    return _git_coordinator
