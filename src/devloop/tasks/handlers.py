"""Dependency discovery per task type and the project-backed task processor."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from devloop.exceptions import ConfigurationError
from devloop.project.graph import DependencyGraph
from devloop.project.models import RunConfig, ServiceConfig, TestConfig
from devloop.tasks.base import Task, TaskType

DependencyResolver = Callable[[DependencyGraph, Task], list[Task]]


class TaskProvider(Protocol):
    """Executes the processing step of a task."""

    async def execute(self, task: Task) -> Any:
        """Run ``task`` and return its output payload, raising on failure."""


def _build_dependencies(graph: DependencyGraph, task: Task) -> list[Task]:
    module = graph.get_module(task.name)
    return [Task.build(graph.get_module(name)) for name in module.build_dependencies]


def _deploy_dependencies(graph: DependencyGraph, task: Task) -> list[Task]:
    service = graph.get_service(task.name)
    return [
        Task.build(graph.get_module(service.module)),
        *_runtime_dependencies(graph, service.dependencies, owner=task.base_key),
    ]


def _test_dependencies(graph: DependencyGraph, task: Task) -> list[Task]:
    test = task.entity
    if not isinstance(test, TestConfig):
        raise ConfigurationError(f"Task {task.base_key} is missing its test descriptor")
    return [
        Task.build(graph.get_module(test.module)),
        *_runtime_dependencies(graph, test.dependencies, owner=task.base_key),
    ]


def _run_dependencies(graph: DependencyGraph, task: Task) -> list[Task]:
    run = graph.get_run(task.name)
    return [
        Task.build(graph.get_module(run.module)),
        *_runtime_dependencies(graph, run.dependencies, owner=task.base_key),
    ]


def _runtime_dependencies(
    graph: DependencyGraph,
    names: Sequence[str],
    *,
    owner: str,
) -> list[Task]:
    tasks: list[Task] = []
    for name in names:
        if graph.has_service(name):
            service: ServiceConfig = graph.get_service(name)
            tasks.append(Task.deploy(service, graph.get_module(service.module)))
        elif graph.has_run(name):
            run: RunConfig = graph.get_run(name)
            tasks.append(Task.run(run, graph.get_module(run.module)))
        else:
            raise ConfigurationError(f"{owner} depends on unknown service or task {name!r}")
    return tasks


DEPENDENCY_RESOLVERS: dict[TaskType, DependencyResolver] = {
    TaskType.BUILD: _build_dependencies,
    TaskType.DEPLOY: _deploy_dependencies,
    TaskType.TEST: _test_dependencies,
    TaskType.RUN: _run_dependencies,
}


class ProjectTaskProcessor:
    """Resolves prerequisites from the project graph and delegates execution.

    Prerequisites are created without ``force``: only the tasks a caller asks
    for explicitly bypass the result cache.
    """

    def __init__(self, *, graph: DependencyGraph, provider: TaskProvider) -> None:
        self.graph = graph
        self.provider = provider

    async def discover_dependencies(self, task: Task) -> list[Task]:
        return DEPENDENCY_RESOLVERS[task.type](self.graph, task)

    async def execute(self, task: Task) -> Any:
        return await self.provider.execute(task)
