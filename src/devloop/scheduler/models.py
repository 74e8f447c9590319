"""Domain models for task scheduling and outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from devloop.tasks.base import Task, TaskType


class NodeState(str, Enum):
    """Lifecycle of one scheduler node within a pass."""

    PENDING = "pending"
    RESOLVING = "resolving-dependencies"
    READY = "ready"
    ACTIVE = "active"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATES = frozenset({NodeState.SUCCESS, NodeState.ERROR})


class FailureKind(str, Enum):
    """Why a task did not succeed."""

    DISCOVERY = "discovery"
    EXECUTION = "execution"
    DEPENDENCY = "dependency"
    CANCELLED = "cancelled"


class TaskProcessor(Protocol):
    """Provider contract the scheduler drives for every task."""

    async def discover_dependencies(self, task: Task) -> list[Task]:
        """Return the tasks that must finish before ``task`` may run."""

    async def execute(self, task: Task) -> Any:
        """Run ``task`` and return its output payload, raising on failure."""


@dataclass(slots=True, eq=False)
class TaskResult:
    """Outcome of one task in a pass."""

    type: TaskType
    base_key: str
    key: str
    version: str
    output: Any = None
    error: BaseException | None = None
    failure: FailureKind | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    dependency_results: dict[str, TaskResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def skipped(self) -> bool:
        """True when the task never ran because a dependency failed."""

        return self.failure == FailureKind.DEPENDENCY

    @property
    def cancelled(self) -> bool:
        return self.failure == FailureKind.CANCELLED

    def describe_failure(self) -> str | None:
        if self.failure is None:
            return None
        if self.failure == FailureKind.DEPENDENCY:
            failed = [key for key, result in self.dependency_results.items() if not result.ok]
            return f"skipped, dependency failed: {', '.join(failed)}"
        if self.failure == FailureKind.CANCELLED:
            return "cancelled"
        return f"{self.failure.value} failed: {self.error}"


@dataclass(slots=True, eq=False)
class TaskNode:
    """Scheduler bookkeeping for one ``base_key`` within a pass."""

    task: Task
    state: NodeState = NodeState.PENDING
    dependency_keys: tuple[str, ...] = ()
    dependant_keys: list[str] = field(default_factory=list)
    requested_by: int = 0
    result: TaskResult | None = None

    @property
    def base_key(self) -> str:
        return self.task.base_key

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(slots=True)
class TaskEvent:
    """Progress notification for one task state change."""

    type: TaskType
    base_key: str
    key: str
    status: str
    duration_ms: int | None = None
    error: str | None = None

    def to_metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "type": self.type.value,
            "key": self.key,
            "baseKey": self.base_key,
            "status": self.status,
        }
        if self.duration_ms is not None:
            metadata["durationMs"] = self.duration_ms
        if self.error is not None:
            metadata["error"] = self.error
        return metadata
