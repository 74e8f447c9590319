"""Entry points wiring policies, the task graph and the watch loop together."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from devloop.config import SchedulerSettings
from devloop.project.graph import DependencyGraph
from devloop.project.models import ModuleConfig
from devloop.scheduler.graph import TaskGraph
from devloop.scheduler.models import TaskEvent, TaskProcessor, TaskResult
from devloop.scheduler.results import TaskResults
from devloop.tasks.base import Task, merge_tasks
from devloop.watch.loop import ChangePolicy, PassReport, RootPolicy, WatchLoop
from devloop.watch.watcher import FileWatcher

logger = logging.getLogger(__name__)

WatcherFactory = Callable[[Iterable[Path], Callable[[Path], None]], FileWatcher]


@dataclass(slots=True)
class ProcessResult:
    """Roots requested by an invocation and the results of their pass."""

    roots: list[Task]
    results: TaskResults

    @property
    def failed_roots(self) -> list[TaskResult]:
        return self.results.failed_roots(self.roots)

    @property
    def ok(self) -> bool:
        return not self.failed_roots


async def process_tasks(
    tasks: Iterable[Task],
    *,
    processor: TaskProcessor,
    scheduler_settings: SchedulerSettings | None = None,
    on_event: Callable[[TaskEvent], None] | None = None,
) -> ProcessResult:
    """Run one pass over ``tasks``; an empty task set yields empty results."""

    roots = merge_tasks(tasks)
    if not roots:
        logger.info("Nothing to do")
        results = TaskResults()
        results.freeze()
        return ProcessResult(roots=[], results=results)

    settings = scheduler_settings or SchedulerSettings()
    graph = TaskGraph(
        processor=processor,
        concurrency=settings.concurrency,
        task_timeout_seconds=settings.task_timeout_seconds,
        on_event=on_event,
    )
    results = await graph.process(roots)
    return ProcessResult(roots=roots, results=results)


async def process_modules(  # noqa: PLR0913
    *,
    graph: DependencyGraph,
    modules: Sequence[ModuleConfig],
    processor: TaskProcessor,
    root_policy: RootPolicy,
    scheduler_settings: SchedulerSettings | None = None,
    on_event: Callable[[TaskEvent], None] | None = None,
) -> ProcessResult:
    """Apply ``root_policy`` to the selected modules and process the result once."""

    return await process_tasks(
        root_policy(graph, modules),
        processor=processor,
        scheduler_settings=scheduler_settings,
        on_event=on_event,
    )


async def watch_modules(
    watch_loop: WatchLoop,
    modules: Sequence[ModuleConfig],
    root_policy: RootPolicy,
    change_policy: ChangePolicy,
    *,
    watcher_factory: WatcherFactory = FileWatcher,
) -> AsyncIterator[PassReport]:
    """Run ``watch_loop`` with a filesystem watcher over every module of its graph.

    Module directories added by a project reload are watched as soon as it succeeds.
    """

    watcher = watcher_factory(_module_roots(watch_loop.graph), watch_loop.submit_threadsafe)

    def _watch_new_modules(graph: DependencyGraph) -> None:
        added = watcher.add_roots(_module_roots(graph))
        if added:
            logger.info("Watching new module directories: %s", ", ".join(map(str, added)))

    watch_loop.reload_listeners.append(_watch_new_modules)
    watcher.start()
    try:
        async for report in watch_loop.run(modules, root_policy, change_policy):
            yield report
    finally:
        watch_loop.reload_listeners.remove(_watch_new_modules)
        watcher.stop()


def _module_roots(graph: DependencyGraph) -> list[Path]:
    return [module.path for module in graph.get_modules()]
