"""Dependency-aware task scheduling."""

from devloop.scheduler.graph import DEFAULT_CONCURRENCY, TaskGraph
from devloop.scheduler.models import (
    FailureKind,
    NodeState,
    TaskEvent,
    TaskNode,
    TaskProcessor,
    TaskResult,
)
from devloop.scheduler.results import TaskResults

__all__ = [
    "DEFAULT_CONCURRENCY",
    "FailureKind",
    "NodeState",
    "TaskEvent",
    "TaskGraph",
    "TaskNode",
    "TaskProcessor",
    "TaskResult",
    "TaskResults",
]
