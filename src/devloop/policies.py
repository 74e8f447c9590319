"""Task-constructor policies mapping module selections and changes to root tasks."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from fnmatch import fnmatch

from devloop.project.graph import DependantPurpose, DependencyGraph
from devloop.project.models import ModuleConfig
from devloop.tasks.base import Task
from devloop.watch.loop import ChangePolicy, RootPolicy

TaskFactory = Callable[[DependencyGraph, ModuleConfig, bool], list[Task]]


def module_build_tasks(graph: DependencyGraph, module: ModuleConfig, force: bool) -> list[Task]:  # noqa: ARG001
    return [Task.build(module, force=force)]


def module_test_tasks(name_filter: str | None = None) -> TaskFactory:
    """Test tasks of a module, optionally restricted to names matching a glob."""

    def _factory(graph: DependencyGraph, module: ModuleConfig, force: bool) -> list[Task]:  # noqa: ARG001
        return [
            Task.test(test, module, force=force)
            for test in module.tests
            if name_filter is None or fnmatch(test.name, name_filter)
        ]

    return _factory


def module_deploy_tasks(service_names: Sequence[str] | None = None) -> TaskFactory:
    """Deploy tasks of a module's services, optionally restricted to ``service_names``."""

    wanted = set(service_names or ())

    def _factory(graph: DependencyGraph, module: ModuleConfig, force: bool) -> list[Task]:  # noqa: ARG001
        return [
            Task.deploy(service, module, force=force)
            for service in module.services
            if not wanted or service.name in wanted
        ]

    return _factory


def modules_policy(task_factory: TaskFactory, *, force: bool = False) -> RootPolicy:
    """Root policy: run ``task_factory`` for every selected module."""

    def _policy(graph: DependencyGraph, modules: Sequence[ModuleConfig]) -> list[Task]:
        return [task for module in modules for task in task_factory(graph, module, force)]

    return _policy


def dependants_policy(
    task_factory: TaskFactory,
    *,
    requested_names: Iterable[str],
    purpose: DependantPurpose = "build",
) -> ChangePolicy:
    """Change policy: the changed module and its transitive dependants.

    Only modules from the originally requested subset get tasks, and those
    tasks are forced so cached outputs of the previous version are not reused.
    """

    requested = set(requested_names)

    def _policy(graph: DependencyGraph, module: ModuleConfig) -> list[Task]:
        dependants = graph.get_dependants(purpose, module.name, transitive=True)
        tasks: list[Task] = []
        for candidate in [module, *dependants.modules]:
            if candidate.name in requested:
                tasks.extend(task_factory(graph, candidate, True))
        return tasks

    return _policy


def affected_tests_policy(
    *,
    requested_modules: Iterable[str],
    name_filter: str | None = None,
) -> ChangePolicy:
    """Re-run tests affected at runtime by a module change, within the requested modules."""

    requested = set(requested_modules)

    def _policy(graph: DependencyGraph, module: ModuleConfig) -> list[Task]:
        dependants = graph.get_dependants("runtime", module.name, transitive=True)
        tasks: list[Task] = []
        for test in dependants.tests:
            if test.module not in requested:
                continue
            if name_filter is not None and not fnmatch(test.name, name_filter):
                continue
            tasks.append(Task.test(test, graph.get_module(test.module), force=True))
        return tasks

    return _policy


def affected_services_policy(*, requested_services: Iterable[str]) -> ChangePolicy:
    """Redeploy requested services that depend on the changed module at runtime."""

    requested = set(requested_services)

    def _policy(graph: DependencyGraph, module: ModuleConfig) -> list[Task]:
        dependants = graph.get_dependants("runtime", module.name, transitive=True)
        return [
            Task.deploy(service, graph.get_module(service.module), force=True)
            for service in dependants.services
            if service.name in requested
        ]

    return _policy
