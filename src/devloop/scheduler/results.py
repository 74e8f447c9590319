"""Aggregated task outcomes for one scheduler pass."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from devloop.scheduler.models import TaskResult
from devloop.tasks.base import Task


class TaskResults:
    """Mapping from ``base_key`` to result, ordered by completion.

    The scheduler fills it while nodes go terminal and freezes it when the
    pass ends; callers only read.
    """

    def __init__(self) -> None:
        self._results: dict[str, TaskResult] = {}
        self._frozen = False

    def record(self, result: TaskResult) -> None:
        if self._frozen:
            raise RuntimeError("Task results are read-only after the pass completed.")
        if result.base_key in self._results:
            raise RuntimeError(f"Result for {result.base_key} was already recorded.")
        self._results[result.base_key] = result

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, base_key: str) -> TaskResult | None:
        return self._results.get(base_key)

    def all(self) -> dict[str, TaskResult]:
        return dict(self._results)

    def keys(self) -> list[str]:
        return list(self._results)

    def succeeded(self) -> list[TaskResult]:
        return [result for result in self._results.values() if result.ok]

    def failed(self) -> list[TaskResult]:
        return [result for result in self._results.values() if not result.ok]

    def failed_roots(self, roots: Iterable[Task | str]) -> list[TaskResult]:
        """Return results of root tasks that ended in any kind of failure."""

        failed: list[TaskResult] = []
        for root in roots:
            base_key = root if isinstance(root, str) else root.base_key
            result = self._results.get(base_key)
            if result is not None and not result.ok:
                failed.append(result)
        return failed

    def is_failure_for(self, roots: Iterable[Task | str]) -> bool:
        """An invocation failed iff one of its root tasks did not succeed."""

        return bool(self.failed_roots(roots))

    def __contains__(self, base_key: object) -> bool:
        return base_key in self._results

    def __getitem__(self, base_key: str) -> TaskResult:
        return self._results[base_key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __repr__(self) -> str:
        return f"TaskResults({', '.join(self._results)})"
