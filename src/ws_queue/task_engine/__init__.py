"""Task queue engine: the task model, its lifecycle, the file-backed store,
and the command API that drives tasks through workspaces and folds.
"""

from .engine import FoldReport, TaskEngine, ValidationReport
from .model import Task, TaskStatus
from .store import QueueStore

__all__ = ["FoldReport", "QueueStore", "Task", "TaskEngine", "TaskStatus", "ValidationReport"]
