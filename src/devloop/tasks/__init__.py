"""Task kinds and their dependency discovery."""

from devloop.tasks.base import Task, TaskType, merge_tasks
from devloop.tasks.handlers import DEPENDENCY_RESOLVERS, ProjectTaskProcessor, TaskProvider

__all__ = [
    "DEPENDENCY_RESOLVERS",
    "ProjectTaskProcessor",
    "Task",
    "TaskProvider",
    "TaskType",
    "merge_tasks",
]
