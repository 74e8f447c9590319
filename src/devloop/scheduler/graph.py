"""Dependency-aware concurrent task scheduler.

A pass starts from a set of root tasks, discovers their prerequisite closure
and executes every task once its dependencies are terminal::

    submit(root) ──▶ PENDING ──▶ RESOLVING ──▶ READY ──▶ ACTIVE ──▶ SUCCESS
                                     │            │          │
                                     ▼            ▼          ▼
                                   ERROR        ERROR      ERROR
                                (discovery)  (dependency) (execution)

Discovery and execution run as asyncio tasks that report back through a
single inbox queue; only the coordinating coroutine touches the node table.
Every discovery finishes before the first execution starts, so a dependency
cycle aborts the pass before any work was done.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine, Iterable
from datetime import datetime
from typing import Any, NamedTuple

from devloop.common import utc_now
from devloop.exceptions import (
    DependencyCycleError,
    DependencyFailedError,
    PassCancelledError,
    TaskExecutionError,
)
from devloop.scheduler.models import (
    FailureKind,
    NodeState,
    TaskEvent,
    TaskNode,
    TaskProcessor,
    TaskResult,
)
from devloop.scheduler.results import TaskResults
from devloop.tasks.base import Task

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 6

_CANCEL = object()

_STATUS_LOG_LEVELS = {
    "active": logging.INFO,
    "success": logging.INFO,
    "error": logging.ERROR,
    "skipped": logging.WARNING,
    "cancelled": logging.WARNING,
}


class _Message(NamedTuple):
    kind: str
    node: TaskNode
    payload: Any
    error: BaseException | None
    started_at: datetime | None = None
    elapsed: float | None = None


class TaskGraph:
    """Runs one pass over root tasks and their full dependency closure.

    Instances are single-use: construct a new graph for every pass so no node
    outlives the change event that produced it.
    """

    def __init__(
        self,
        *,
        processor: TaskProcessor,
        concurrency: int = DEFAULT_CONCURRENCY,
        task_timeout_seconds: float | None = None,
        on_event: Callable[[TaskEvent], None] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("Concurrency must be >= 1.")
        self._processor = processor
        self._concurrency = concurrency
        self._task_timeout_seconds = task_timeout_seconds or None
        self._on_event = on_event
        self._nodes: dict[str, TaskNode] = {}
        self._results = TaskResults()
        self._inbox: asyncio.Queue[_Message | object] = asyncio.Queue()
        self._handles: set[asyncio.Task[None]] = set()
        self._discovering = 0
        self._active = 0
        self._started = False
        self._cancel_requested = False

    @property
    def nodes(self) -> dict[str, TaskNode]:
        return dict(self._nodes)

    @property
    def results(self) -> TaskResults:
        return self._results

    async def process(self, root_tasks: Iterable[Task]) -> TaskResults:
        """Execute ``root_tasks`` and every prerequisite they discover.

        Returns results for all nodes reachable from the roots. Raises
        :class:`DependencyCycleError` without executing anything when the
        dependencies are circular.
        """

        if self._started:
            raise RuntimeError("A TaskGraph runs exactly one pass; create a new instance.")
        self._started = True

        roots = list(root_tasks)
        if not roots:
            raise ValueError("At least one root task is required.")
        seen: set[str] = set()
        for task in roots:
            if task.base_key in seen:
                raise ValueError(f"Duplicate root task: {task.base_key}")
            seen.add(task.base_key)

        logger.debug("Processing %d root task(s): %s", len(roots), ", ".join(sorted(seen)))
        try:
            for task in roots:
                self._submit(task)
            await self._drive()
        finally:
            await self._cancel_handles()
        self._results.freeze()
        return self._results

    def cancel(self) -> None:
        """Abandon the pass; unfinished tasks are reported as cancelled."""

        if self._cancel_requested:
            return
        self._cancel_requested = True
        for handle in list(self._handles):
            handle.cancel()
        self._inbox.put_nowait(_CANCEL)

    # -- coordination -----------------------------------------------------------

    async def _drive(self) -> None:
        while True:
            if self._cancel_requested:
                self._cancel_unfinished()
                return
            if self._discovering == 0:
                self._dispatch_ready()
                if all(node.terminal for node in self._nodes.values()):
                    return
                if self._active == 0:
                    stalled = [key for key, node in self._nodes.items() if not node.terminal]
                    raise RuntimeError(f"Scheduler stalled with pending tasks: {stalled}")

            message = await self._inbox.get()
            if not isinstance(message, _Message):
                continue
            if message.kind == "discovered":
                self._discovering -= 1
                self._on_discovered(message)
            else:
                self._active -= 1
                self._on_executed(message)

    def _submit(self, task: Task) -> TaskNode:
        node = self._nodes.get(task.base_key)
        if node is not None:
            node.requested_by += 1
            if task.force and not node.task.force:
                node.task = node.task.with_force()
            if task.version != node.task.version:
                logger.debug(
                    "Ignoring version %s of %s, already scheduled at %s",
                    task.version,
                    task.base_key,
                    node.task.version,
                )
            return node

        node = TaskNode(task=task, requested_by=1)
        self._nodes[task.base_key] = node
        node.state = NodeState.RESOLVING
        self._discovering += 1
        self._spawn(self._discover(node))
        return node

    def _on_discovered(self, message: _Message) -> None:
        node = message.node
        if message.error is not None:
            self._fail(node, FailureKind.DISCOVERY, message.error)
            return

        keys: list[str] = []
        for dependency in message.payload:
            dependency_node = self._submit(dependency)
            if dependency_node.base_key not in keys:
                keys.append(dependency_node.base_key)
        node.dependency_keys = tuple(keys)
        for key in keys:
            self._nodes[key].dependant_keys.append(node.base_key)
        self._check_cycle(node)
        node.state = NodeState.READY

    def _dispatch_ready(self) -> None:
        progressed = True
        while progressed:
            progressed = False
            for node in self._nodes.values():
                if node.state != NodeState.READY:
                    continue
                dependencies = [self._nodes[key] for key in node.dependency_keys]
                if not all(dependency.terminal for dependency in dependencies):
                    continue
                failed = [d.base_key for d in dependencies if d.state == NodeState.ERROR]
                if failed:
                    self._fail(node, FailureKind.DEPENDENCY, DependencyFailedError(failed))
                    progressed = True
                    continue
                if self._active < self._concurrency:
                    self._start_execution(node)

    def _start_execution(self, node: TaskNode) -> None:
        node.state = NodeState.ACTIVE
        self._active += 1
        self._emit(node, "active")
        self._spawn(self._execute(node))

    def _on_executed(self, message: _Message) -> None:
        node = message.node
        if message.error is not None:
            self._fail(
                node,
                FailureKind.EXECUTION,
                message.error,
                started_at=message.started_at,
                elapsed=message.elapsed,
            )
            return
        node.result = self._result_for(
            node,
            output=message.payload,
            started_at=message.started_at,
            elapsed=message.elapsed,
        )
        node.state = NodeState.SUCCESS
        self._results.record(node.result)
        self._emit(node, "success", duration_ms=node.result.duration_ms)

    def _fail(
        self,
        node: TaskNode,
        failure: FailureKind,
        error: BaseException,
        *,
        started_at: datetime | None = None,
        elapsed: float | None = None,
    ) -> None:
        node.result = self._result_for(
            node,
            error=error,
            failure=failure,
            started_at=started_at,
            elapsed=elapsed,
        )
        node.state = NodeState.ERROR
        self._results.record(node.result)
        status = {
            FailureKind.DEPENDENCY: "skipped",
            FailureKind.CANCELLED: "cancelled",
        }.get(failure, "error")
        self._emit(node, status, duration_ms=node.result.duration_ms, error=str(error))

    def _cancel_unfinished(self) -> None:
        for node in self._nodes.values():
            if node.terminal:
                continue
            self._fail(node, FailureKind.CANCELLED, PassCancelledError("Pass was cancelled."))

    def _check_cycle(self, node: TaskNode) -> None:
        for key in node.dependency_keys:
            path = self._find_path(key, node.base_key)
            if path is not None:
                raise DependencyCycleError([node.base_key, *path])

    def _find_path(self, start: str, target: str) -> list[str] | None:
        stack: list[tuple[str, list[str]]] = [(start, [start])]
        visited: set[str] = set()
        while stack:
            current, path = stack.pop()
            if current == target:
                return path
            if current in visited:
                continue
            visited.add(current)
            for key in self._nodes[current].dependency_keys:
                stack.append((key, [*path, key]))
        return None

    def _result_for(  # noqa: PLR0913
        self,
        node: TaskNode,
        *,
        output: Any = None,
        error: BaseException | None = None,
        failure: FailureKind | None = None,
        started_at: datetime | None = None,
        elapsed: float | None = None,
    ) -> TaskResult:
        task = node.task
        dependency_results: dict[str, TaskResult] = {}
        for key in node.dependency_keys:
            dependency_result = self._nodes[key].result
            if dependency_result is not None:
                dependency_results[key] = dependency_result
        return TaskResult(
            type=task.type,
            base_key=task.base_key,
            key=task.key,
            version=task.version,
            output=output,
            error=error,
            failure=failure,
            started_at=started_at,
            completed_at=utc_now(),
            duration_ms=int(elapsed * 1000) if elapsed is not None else None,
            dependency_results=dependency_results,
        )

    # -- workers ------------------------------------------------------------------

    def _spawn(self, coroutine: Coroutine[Any, Any, None]) -> None:
        handle = asyncio.create_task(coroutine)
        self._handles.add(handle)
        handle.add_done_callback(self._handles.discard)

    async def _discover(self, node: TaskNode) -> None:
        try:
            dependencies = list(await self._processor.discover_dependencies(node.task))
        except Exception as error:  # noqa: BLE001
            self._inbox.put_nowait(_Message("discovered", node, None, error))
            return
        self._inbox.put_nowait(_Message("discovered", node, dependencies, None))

    async def _execute(self, node: TaskNode) -> None:
        started_at = utc_now()
        start = time.monotonic()
        try:
            output = await self._run_processor(node.task)
        except Exception as error:  # noqa: BLE001
            self._inbox.put_nowait(
                _Message("executed", node, None, error, started_at, time.monotonic() - start),
            )
            return
        self._inbox.put_nowait(
            _Message("executed", node, output, None, started_at, time.monotonic() - start),
        )

    async def _run_processor(self, task: Task) -> Any:
        if self._task_timeout_seconds is None:
            return await self._processor.execute(task)
        try:
            return await asyncio.wait_for(
                self._processor.execute(task),
                timeout=self._task_timeout_seconds,
            )
        except TimeoutError as error:
            raise TaskExecutionError(
                f"{task.base_key} timed out after {self._task_timeout_seconds:g}s",
                timed_out=True,
            ) from error

    async def _cancel_handles(self) -> None:
        pending = [handle for handle in self._handles if not handle.done()]
        for handle in pending:
            if not handle.cancelling():
                handle.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _emit(
        self,
        node: TaskNode,
        status: str,
        *,
        duration_ms: int | None = None,
        error: str | None = None,
    ) -> None:
        task = node.task
        event = TaskEvent(
            type=task.type,
            base_key=task.base_key,
            key=task.key,
            status=status,
            duration_ms=duration_ms,
            error=error,
        )
        message = f"{task.base_key} {status}"
        if duration_ms is not None and status == "success":
            message += f" in {duration_ms}ms"
        if error is not None:
            message += f": {error}"
        logger.log(
            _STATUS_LOG_LEVELS[status],
            message,
            extra={"section": task.name, "task_metadata": event.to_metadata()},
        )
        if self._on_event is not None:
            self._on_event(event)
