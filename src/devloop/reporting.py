"""Render task results and watch passes as CLI lines."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from devloop.scheduler.models import TaskResult
from devloop.scheduler.results import TaskResults
from devloop.tasks.base import Task
from devloop.watch.loop import PassReport

_OUTPUT_PREVIEW_LINES = 20


def status_marker(result: TaskResult) -> str:
    if result.ok:
        if isinstance(result.output, dict) and result.output.get("cached"):
            return "cached"
        return "ok"
    if result.skipped:
        return "skipped"
    if result.cancelled:
        return "cancelled"
    return "failed"


def render_results(results: TaskResults) -> Iterator[str]:
    """One line per task in completion order, with output tails for failures."""

    for result in results.all().values():
        duration = f" ({result.duration_ms}ms)" if result.duration_ms is not None else ""
        yield f"  [{status_marker(result)}] {result.base_key}{duration}"
        if result.ok:
            continue
        yield f"    {result.describe_failure()}"
        output = getattr(result.error, "output", "")
        if output:
            for line in output.rstrip().splitlines()[-_OUTPUT_PREVIEW_LINES:]:
                yield f"    | {line}"


def render_summary(results: TaskResults, roots: Iterable[Task]) -> str:
    failed = results.failed_roots(roots)
    if not failed:
        return "Done!"
    return f"{len(failed)} requested task(s) failed!"


def render_pass(report: PassReport) -> Iterator[str]:
    if report.trigger == "initial":
        yield f"Pass {report.number}: initial"
    else:
        yield f"Pass {report.number}: changes in {', '.join(report.changed_modules) or 'project'}"

    if report.error is not None:
        yield f"  Error: {report.error}"
        return
    if report.results is not None:
        yield from render_results(report.results)
    if report.cancelled:
        yield "Pass cancelled before all tasks finished."
    elif report.results is not None:
        yield render_summary(report.results, report.roots)
    yield "Waiting for changes..."
