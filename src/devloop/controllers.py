"""CLI controllers for build, test, deploy and run commands."""

from __future__ import annotations

import asyncio
import logging
import queue
import signal
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from devloop.cache import ResultCache
from devloop.config import Settings
from devloop.logging_setup import setup_logging
from devloop.policies import (
    affected_services_policy,
    affected_tests_policy,
    dependants_policy,
    module_build_tasks,
    module_deploy_tasks,
    module_test_tasks,
    modules_policy,
)
from devloop.process import process_modules, watch_modules
from devloop.project.graph import DependencyGraph
from devloop.project.loader import load_project
from devloop.project.models import EntityKind, ModuleConfig, ServiceConfig
from devloop.providers.shell import ShellProvider
from devloop.reporting import render_pass, render_results, render_summary
from devloop.tasks.base import Task
from devloop.tasks.handlers import ProjectTaskProcessor
from devloop.watch.loop import ChangePolicy, RootPolicy, WatchLoop

logger = logging.getLogger(__name__)

_SENTINEL = object()
_POLL_SECONDS = 0.5


@dataclass(slots=True)
class BuildCommand:
    """Input for the build command."""

    project_path: Path | None = None
    modules: tuple[str, ...] = ()
    force: bool = False
    watch: bool = False


@dataclass(slots=True)
class TestCommand:
    """Input for the test command."""

    __test__ = False

    project_path: Path | None = None
    modules: tuple[str, ...] = ()
    name: str | None = None
    force: bool = False
    watch: bool = False


@dataclass(slots=True)
class DeployCommand:
    """Input for the deploy command."""

    project_path: Path | None = None
    services: tuple[str, ...] = ()
    force: bool = False
    watch: bool = False


@dataclass(slots=True)
class RunTaskCommand:
    """Input for the run command."""

    project_path: Path | None = None
    task: str = ""
    force: bool = False


@dataclass(slots=True)
class ModulesCommand:
    """Input for the modules listing command."""

    project_path: Path | None = None


@dataclass(slots=True)
class CommandResult:
    """One-shot command report to render in CLI."""

    lines: list[str]
    success: bool


@dataclass(slots=True)
class _Plan:
    graph: DependencyGraph
    modules: list[ModuleConfig]
    root_policy: RootPolicy


@dataclass(slots=True)
class _WatchPlan(_Plan):
    change_policy: ChangePolicy


class WorkflowCliController:
    """CLI controller for task graph passes and watch mode."""

    def build(self, command: BuildCommand) -> CommandResult:
        settings, graph = _load(command.project_path)
        return _run_once(settings, _build_plan(graph, command))

    def test(self, command: TestCommand) -> CommandResult:
        settings, graph = _load(command.project_path)
        return _run_once(settings, _test_plan(graph, command))

    def deploy(self, command: DeployCommand) -> CommandResult:
        settings, graph = _load(command.project_path)
        return _run_once(settings, _deploy_plan(graph, command))

    def run_task(self, command: RunTaskCommand) -> CommandResult:
        settings, graph = _load(command.project_path)
        run = graph.get_run(command.task)
        module = graph.get_module(run.module)

        def _root_policy(graph: DependencyGraph, modules: Sequence[ModuleConfig]) -> list[Task]:  # noqa: ARG001
            return [Task.run(run, module, force=command.force)]

        return _run_once(settings, _Plan(graph=graph, modules=[module], root_policy=_root_policy))

    def watch(self, command: BuildCommand | TestCommand | DeployCommand) -> Iterator[str]:
        """Run an initial pass, then re-run affected tasks on every source change.

        Yields progress lines until interrupted with SIGINT or SIGTERM.
        """

        settings, graph = _load(command.project_path)
        if isinstance(command, BuildCommand):
            plan = _build_plan(graph, command)
        elif isinstance(command, TestCommand):
            plan = _test_plan(graph, command)
        else:
            plan = _deploy_plan(graph, command)

        yield from _watch(settings, plan)

    def list_modules(self, command: ModulesCommand) -> Iterator[str]:
        _, graph = _load(command.project_path)
        modules = graph.get_modules()
        if not modules:
            yield "No modules configured."
            return
        for module in modules:
            yield f"{module.name} {module.version}"
            yield f"  Path: {module.path}"
            if module.build_dependencies:
                yield f"  Build dependencies: {', '.join(module.build_dependencies)}"
            for service in module.services:
                yield f"  Service: {service.name}{_dependency_suffix(service.dependencies)}"
            for test in module.tests:
                yield f"  Test: {test.full_name}{_dependency_suffix(test.dependencies)}"
            for run in module.runs:
                yield f"  Task: {run.name}{_dependency_suffix(run.dependencies)}"


def _load(project_path: Path | None) -> tuple[Settings, DependencyGraph]:
    settings = Settings.from_env(project_path=project_path)
    settings.validate()
    setup_logging(settings.logging)
    return settings, load_project(settings.project_path)


def _build_plan(graph: DependencyGraph, command: BuildCommand) -> _WatchPlan:
    modules = graph.get_modules(command.modules)
    return _WatchPlan(
        graph=graph,
        modules=modules,
        root_policy=modules_policy(module_build_tasks, force=command.force),
        change_policy=dependants_policy(
            module_build_tasks,
            requested_names=[module.name for module in modules],
        ),
    )


def _test_plan(graph: DependencyGraph, command: TestCommand) -> _WatchPlan:
    modules = graph.get_modules(command.modules)
    return _WatchPlan(
        graph=graph,
        modules=modules,
        root_policy=modules_policy(module_test_tasks(command.name), force=command.force),
        change_policy=affected_tests_policy(
            requested_modules=[module.name for module in modules],
            name_filter=command.name,
        ),
    )


def _deploy_plan(graph: DependencyGraph, command: DeployCommand) -> _WatchPlan:
    services: list[ServiceConfig] = graph.get_entities(EntityKind.SERVICE, command.services)  # type: ignore[assignment]
    service_names = [service.name for service in services]
    owners = list(dict.fromkeys(service.module for service in services))
    return _WatchPlan(
        graph=graph,
        modules=graph.get_modules(owners) if owners else [],
        root_policy=modules_policy(module_deploy_tasks(service_names), force=command.force),
        change_policy=affected_services_policy(requested_services=service_names),
    )


def _run_once(settings: Settings, plan: _Plan) -> CommandResult:
    with _result_cache(settings) as cache:
        processor = ProjectTaskProcessor(graph=plan.graph, provider=ShellProvider(cache=cache))
        outcome = asyncio.run(
            process_modules(
                graph=plan.graph,
                modules=plan.modules,
                processor=processor,
                root_policy=plan.root_policy,
                scheduler_settings=settings.scheduler,
            ),
        )

    if not outcome.roots:
        return CommandResult(lines=["Nothing to do."], success=True)
    lines = list(render_results(outcome.results))
    lines.append(render_summary(outcome.results, outcome.roots))
    return CommandResult(lines=lines, success=outcome.ok)


def _watch(settings: Settings, plan: _WatchPlan) -> Iterator[str]:
    progress_q: queue.Queue[str | object] = queue.Queue()
    watch_loops: list[WatchLoop] = []
    stop_requested = threading.Event()
    error_holder: list[Exception] = []

    def _request_stop(signal_name: str) -> None:
        if not stop_requested.is_set():
            progress_q.put(f"Received {signal_name}, stopping...")
        stop_requested.set()
        for watch_loop in watch_loops:
            watch_loop.stop_threadsafe()

    async def _main() -> None:
        with _result_cache(settings) as cache:
            provider = ShellProvider(cache=cache)
            watch_loop = WatchLoop(
                graph=plan.graph,
                processor_factory=lambda graph: ProjectTaskProcessor(graph=graph, provider=provider),
                watch_settings=settings.watch,
                scheduler_settings=settings.scheduler,
                refresh_graph=lambda: load_project(settings.project_path),
            )
            watch_loops.append(watch_loop)
            if stop_requested.is_set():
                watch_loop.stop()
            async for report in watch_modules(
                watch_loop,
                plan.modules,
                plan.root_policy,
                plan.change_policy,
            ):
                for line in render_pass(report):
                    progress_q.put(line)

    def _run() -> None:
        try:
            asyncio.run(_main())
        except Exception as exc:  # noqa: BLE001
            error_holder.append(exc)
        finally:
            progress_q.put(_SENTINEL)

    worker_thread = threading.Thread(target=_run, daemon=True)
    worker_thread.start()

    with _signal_handlers(_request_stop):
        while True:
            try:
                item = progress_q.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if item is _SENTINEL:
                break
            yield str(item)

    worker_thread.join(timeout=10)
    if error_holder:
        yield f"Watch mode failed with error: {error_holder[0]}"


@contextmanager
def _signal_handlers(on_signal: Callable[[str], None]) -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        on_signal(name)

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


@contextmanager
def _result_cache(settings: Settings) -> Iterator[ResultCache]:
    cache = ResultCache(_cache_path(settings), busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    cache.init_schema()
    try:
        yield cache
    finally:
        cache.close()


def _cache_path(settings: Settings) -> Path:
    if settings.cache_path.is_absolute():
        return settings.cache_path
    project_path = settings.project_path
    root = project_path if project_path.is_dir() else project_path.parent
    return root / settings.cache_path


def _dependency_suffix(dependencies: Sequence[str]) -> str:
    return f" (depends on {', '.join(dependencies)})" if dependencies else ""
