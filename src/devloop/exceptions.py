"""Error types raised by devloop."""

from __future__ import annotations

from collections.abc import Sequence


class DevloopError(RuntimeError):
    """Base class for all devloop errors."""


class ConfigurationError(DevloopError):
    """Project configuration is invalid or references unknown entities."""


class DependencyCycleError(DevloopError):
    """Task dependencies form a cycle, so no execution order exists."""

    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__(f"Circular task dependencies detected: {' -> '.join(cycle)}")
        self.cycle = tuple(cycle)


class TaskExecutionError(DevloopError):
    """A task's processing step failed."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        output: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out


class DependencyFailedError(DevloopError):
    """A task was not executed because one of its dependencies failed."""

    def __init__(self, failed_dependencies: Sequence[str]) -> None:
        super().__init__(f"Dependency failed: {', '.join(failed_dependencies)}")
        self.failed_dependencies = tuple(failed_dependencies)


class PassCancelledError(DevloopError):
    """A task was left unfinished because its pass was cancelled."""
