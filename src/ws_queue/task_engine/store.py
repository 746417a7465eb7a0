"""File-backed task queue with a single serialisation point for mutations.

The queue lives in one JSON document (``queue.json``) in the per-user config
directory. Every mutation goes through :meth:`QueueStore.transaction`, which
takes an in-process lock plus a file lock, re-reads the document, applies the
change and rewrites the whole file atomically.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from filelock import FileLock, Timeout
from loguru import logger

from ..errors import DuplicateTaskError, PersistenceError, TaskNotFoundError
from ..io_utils import _atomic_write_json, _load_json_with_error
from ..utils import _short_id
from .model import Task, validate_task_name

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LOCK_TIMEOUT = 30  # seconds


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> list[dict[str, Any]]:
    """Load the raw task list from *path*, returning ``[]`` if missing."""
    data, err = _load_json_with_error(path, {"tasks": []})
    if err:
        raise PersistenceError(f"failed to read queue file {path}: {err}")
    tasks = data.get("tasks", [])
    if tasks is None:
        return []
    if not isinstance(tasks, list):
        raise PersistenceError(f"failed to parse queue file {path}: 'tasks' must be an array")
    return tasks


def _save_raw(path: Path, tasks: list[dict[str, Any]]) -> None:
    try:
        _atomic_write_json(path, {"tasks": tasks})
    except OSError as exc:
        raise PersistenceError(f"failed to write queue file {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# QueueStore
# ---------------------------------------------------------------------------

class QueueStore:
    """Ordered, persisted list of :class:`Task` records.

    Parameters
    ----------
    path:
        Location of the queue document. Its parent directory is created on
        first write.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock_path = path.with_name(path.name + ".lock")
        self._mutex = threading.RLock()
        self._file_lock = FileLock(str(self._lock_path), timeout=LOCK_TIMEOUT)
        self._tasks: list[Task] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    # -- internal helpers ---------------------------------------------------

    def _load(self) -> list[Task]:
        return [Task.from_dict(d) for d in _load_raw(self._path)]

    def _save(self, tasks: list[Task]) -> None:
        _save_raw(self._path, [t.to_dict() for t in tasks])

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._mutex:
            try:
                self._lock_path.parent.mkdir(parents=True, exist_ok=True)
                self._file_lock.acquire()
            except Timeout as exc:
                raise PersistenceError(f"timed out waiting for queue lock {self._lock_path}") from exc
            except OSError as exc:
                raise PersistenceError(f"cannot lock queue file {self._lock_path}: {exc}") from exc
            try:
                yield
            finally:
                self._file_lock.release()

    # -- transactions -------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[_QueueTx]:
        """Acquire the locks, reload the queue, yield a transaction, save on exit.

        Usage::

            with store.transaction() as tx:
                task = tx.get("1a2b3c4d")
                task.description = "updated"
                tx.replace(task)
                # automatically saved on exit

        Nothing is written if the block raises.
        """
        with self._locked():
            tx = _QueueTx(self._load())
            yield tx
            if tx.dirty:
                self._save(tx.tasks)
            self._tasks = tx.tasks

    # -- queries ------------------------------------------------------------

    def list(self) -> list[Task]:
        with self._mutex:
            return [t.copy() for t in self._tasks]

    def get_by_id(self, task_id: str) -> Optional[Task]:
        with self._mutex:
            for t in self._tasks:
                if t.id == task_id:
                    return t.copy()
        return None

    def get_by_name(self, name: str) -> Optional[Task]:
        with self._mutex:
            for t in self._tasks:
                if t.name == name:
                    return t.copy()
        return None

    def get_next_pending(self) -> Optional[Task]:
        with self._mutex:
            for t in self._tasks:
                if t.is_pending:
                    return t.copy()
        return None

    def get_active(self) -> Optional[Task]:
        with self._mutex:
            for t in self._tasks:
                if t.is_active:
                    return t.copy()
        return None

    # -- mutations ----------------------------------------------------------

    def add(self, name: str, description: str = "") -> Task:
        """Append a new ``queued`` task.

        Raises:
            InvalidTaskNameError: If *name* is not usable as a branch/directory.
            DuplicateTaskError: If a task with the same name is already in the queue.
            PersistenceError: If the queue cannot be written.
        """
        name = validate_task_name(name)
        with self.transaction() as tx:
            existing = tx.find_by_name(name)
            if existing is not None:
                raise DuplicateTaskError(name, existing.id)
            task = Task(name=name, description=description or "")
            task.id = tx.fresh_id()
            tx.append(task)
        logger.debug("Queued task {} ({})", task.id, task.name)
        return task.copy()

    def update_task(self, task: Task) -> Task:
        """Replace the stored task with the same id and persist.

        Raises:
            TaskNotFoundError: If no stored task has ``task.id``.
        """
        with self.transaction() as tx:
            tx.replace(task)
        return task

    def remove(self, task_id: str) -> Task:
        with self.transaction() as tx:
            removed = tx.delete(task_id)
        logger.debug("Removed task {} ({})", removed.id, removed.name)
        return removed

    def clear(self) -> int:
        """Drop every completed or failed task; returns how many were removed."""
        with self.transaction() as tx:
            before = len(tx.tasks)
            tx.tasks = [t for t in tx.tasks if not t.is_terminal]
            tx.dirty = True
            removed = before - len(tx.tasks)
        logger.debug("Cleared {} finished task(s)", removed)
        return removed


class _QueueTx:
    """In-memory transaction over the ordered task list."""

    def __init__(self, tasks: list[Task]) -> None:
        self.tasks = tasks
        self.dirty = False

    def get(self, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def find_by_name(self, name: str) -> Optional[Task]:
        for t in self.tasks:
            if t.name == name:
                return t
        return None

    def fresh_id(self) -> str:
        return _short_id(t.id for t in self.tasks)

    def append(self, task: Task) -> Task:
        if self.get(task.id) is not None:
            raise ValueError(f"Task {task.id} already exists")
        self.tasks.append(task)
        self.dirty = True
        return task

    def replace(self, task: Task) -> Task:
        for idx, t in enumerate(self.tasks):
            if t.id == task.id:
                self.tasks[idx] = task.copy()
                self.dirty = True
                return task
        raise TaskNotFoundError(task.id)

    def delete(self, task_id: str) -> Task:
        for idx, t in enumerate(self.tasks):
            if t.id == task_id:
                self.dirty = True
                return self.tasks.pop(idx)
        raise TaskNotFoundError(task_id)
