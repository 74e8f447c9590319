"""Change-driven re-scheduling loop.

The loop runs an initial pass, then waits for changed paths, maps them to
modules and runs one fresh :class:`TaskGraph` pass per batch of changes.
Passes never overlap: changes observed while a pass runs are collected and
coalesced into the next pass. When more distinct paths arrive than the
configured queue size, the next pass treats every module as changed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from devloop.config import SchedulerSettings, WatchSettings
from devloop.exceptions import DevloopError
from devloop.project.graph import DependencyGraph
from devloop.project.models import ModuleConfig
from devloop.scheduler.graph import TaskGraph
from devloop.scheduler.models import TaskEvent, TaskProcessor
from devloop.scheduler.results import TaskResults
from devloop.tasks.base import Task, merge_tasks

logger = logging.getLogger(__name__)

RootPolicy = Callable[[DependencyGraph, Sequence[ModuleConfig]], Iterable[Task]]
ChangePolicy = Callable[[DependencyGraph, ModuleConfig], Iterable[Task]]
ProcessorFactory = Callable[[DependencyGraph], TaskProcessor]


class WatchState(str, Enum):
    """Lifecycle of a watch loop."""

    IDLE = "idle"
    RUNNING_PASS = "running-pass"
    STOPPED = "stopped"


@dataclass(slots=True)
class PassReport:
    """Outcome of one watch pass."""

    number: int
    trigger: str
    changed_modules: tuple[str, ...] = ()
    roots: list[Task] = field(default_factory=list)
    results: TaskResults | None = None
    cancelled: bool = False
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        if self.error is not None or self.cancelled or self.results is None:
            return False
        return not self.results.is_failure_for(self.roots)


class WatchLoop:
    """Serializes passes over a project while watching for source changes."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        graph: DependencyGraph,
        processor_factory: ProcessorFactory,
        watch_settings: WatchSettings | None = None,
        scheduler_settings: SchedulerSettings | None = None,
        refresh_graph: Callable[[], DependencyGraph] | None = None,
        on_event: Callable[[TaskEvent], None] | None = None,
    ) -> None:
        self.graph = graph
        self.processor_factory = processor_factory
        self.watch_settings = watch_settings or WatchSettings()
        self.scheduler_settings = scheduler_settings or SchedulerSettings()
        self.refresh_graph = refresh_graph
        self.on_event = on_event
        self.reload_listeners: list[Callable[[DependencyGraph], None]] = []
        self.state = WatchState.IDLE
        self._pending: dict[Path, None] = {}
        self._overflowed = False
        self._wakeup = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._current: TaskGraph | None = None
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def submit(self, path: Path) -> None:
        """Record a changed path; must be called on the loop's thread."""

        if self.state == WatchState.STOPPED:
            return
        if path not in self._pending:
            if len(self._pending) < self.watch_settings.queue_size:
                self._pending[path] = None
            elif not self._overflowed:
                logger.warning("Change queue is full, treating every module as changed")
                self._overflowed = True
        self._wakeup.set()

    def submit_threadsafe(self, path: Path) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Watch loop not running, ignoring change to %s", path)
            return
        loop.call_soon_threadsafe(self.submit, path)

    def stop(self) -> None:
        """Stop after the in-flight pass drains (or is cancelled at the drain timeout)."""

        if not self._stop_event.is_set():
            logger.info("Stopping watch loop")
        self._stop_event.set()

    def stop_threadsafe(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self._stop_event.set()
            return
        loop.call_soon_threadsafe(self.stop)

    async def run(
        self,
        initial_modules: Sequence[ModuleConfig],
        root_policy: RootPolicy,
        change_policy: ChangePolicy,
    ) -> AsyncIterator[PassReport]:
        """Yield one report per pass until :meth:`stop` is called."""

        self._loop = asyncio.get_running_loop()
        number = 0
        try:
            if self._stop_event.is_set():
                return

            roots = merge_tasks(root_policy(self.graph, initial_modules))
            if roots:
                number += 1
                yield await self._run_pass(number, "initial", (), roots)
            else:
                logger.info("Nothing to do for the initial pass")

            while not self._stop_event.is_set():
                batch = await self._next_changes()
                if batch is None:
                    break
                paths, overflowed = batch

                if self.refresh_graph is not None:
                    try:
                        self.graph = await asyncio.to_thread(self.refresh_graph)
                    except (DevloopError, OSError) as error:
                        logger.error("Failed to reload project: %s", error)
                        number += 1
                        yield PassReport(number=number, trigger="change", error=error)
                        continue
                    for listener in self.reload_listeners:
                        listener(self.graph)

                if overflowed:
                    modules = self.graph.get_modules()
                else:
                    modules = self._changed_modules(paths)
                if not modules:
                    continue
                changed = tuple(module.name for module in modules)
                logger.info("Modules changed: %s", ", ".join(changed))

                tasks: list[Task] = []
                for module in modules:
                    tasks.extend(change_policy(self.graph, module))
                roots = merge_tasks(tasks)
                if not roots:
                    logger.debug("No tasks affected by changes in %s", ", ".join(changed))
                    continue

                number += 1
                yield await self._run_pass(number, "change", changed, roots)
        finally:
            self.state = WatchState.STOPPED

    async def _run_pass(
        self,
        number: int,
        trigger: str,
        changed: tuple[str, ...],
        roots: list[Task],
    ) -> PassReport:
        report = PassReport(number=number, trigger=trigger, changed_modules=changed, roots=roots)
        graph = TaskGraph(
            processor=self.processor_factory(self.graph),
            concurrency=self.scheduler_settings.concurrency,
            task_timeout_seconds=self.scheduler_settings.task_timeout_seconds,
            on_event=self.on_event,
        )
        self._current = graph
        self.state = WatchState.RUNNING_PASS
        logger.debug("Starting pass %d with %d root task(s)", number, len(roots))

        pass_task = asyncio.create_task(graph.process(roots))
        stop_task = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait({pass_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if not pass_task.done():
                drain_timeout = self.watch_settings.drain_timeout_seconds
                done, _ = await asyncio.wait({pass_task}, timeout=drain_timeout)
                if not done:
                    logger.warning(
                        "Pass %d did not finish within %gs, cancelling",
                        number,
                        drain_timeout,
                    )
                    graph.cancel()
                    report.cancelled = True
            try:
                report.results = await pass_task
            except DevloopError as error:
                logger.error("Pass %d aborted: %s", number, error)
                report.error = error
        finally:
            stop_task.cancel()
            if not pass_task.done():
                graph.cancel()
                await asyncio.gather(pass_task, return_exceptions=True)
            self._current = None
            if self.state == WatchState.RUNNING_PASS:
                self.state = WatchState.IDLE
        return report

    async def _next_changes(self) -> tuple[list[Path], bool] | None:
        """Wait for at least one change, debounce, then take everything collected.

        Returns the changed paths and whether the queue overflowed, or ``None``
        once the loop is stopping.
        """

        wakeup_task = asyncio.create_task(self._wakeup.wait())
        stop_task = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait({wakeup_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            if not wakeup_task.done():
                wakeup_task.cancel()
        if self._stop_event.is_set():
            return None

        debounce = self.watch_settings.debounce_seconds
        if debounce > 0:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=debounce)
            except TimeoutError:
                pass
            if self._stop_event.is_set():
                return None

        paths = list(self._pending)
        overflowed = self._overflowed
        self._pending.clear()
        self._overflowed = False
        self._wakeup.clear()
        return paths, overflowed

    def _changed_modules(self, paths: Iterable[Path]) -> list[ModuleConfig]:
        names: set[str] = set()
        for path in paths:
            module = self.graph.module_for_path(path)
            if module is None:
                logger.debug("Ignoring change outside of any module: %s", path)
                continue
            if not self.graph.owns_path(module, path):
                logger.debug("Ignoring change to untracked file of %s: %s", module.name, path)
                continue
            names.add(module.name)
        return [module for module in self.graph.get_modules() if module.name in names]
