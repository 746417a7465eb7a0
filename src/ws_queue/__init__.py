"""Provide the public `ws_queue` package exports."""

from __future__ import annotations

from .task_engine import QueueStore, Task, TaskEngine, TaskStatus

__all__ = ["QueueStore", "Task", "TaskEngine", "TaskStatus"]
