"""Subprocess-based provider running each task's shell command."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Mapping
from typing import Any

from devloop.cache import ResultCache
from devloop.exceptions import TaskExecutionError
from devloop.tasks.base import Task, TaskType

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_TAIL_CHARS = 4_000
_TIMEOUT_EXIT_CODE = 124


class ShellProvider:
    """Execute per-task commands in the owning module directory.

    Build outputs are cached by ``(base_key, version)``; a build whose version
    is already cached is skipped unless the task is forced.
    """

    def __init__(
        self,
        *,
        cache: ResultCache | None = None,
        env: Mapping[str, str] | None = None,
        output_tail_chars: int = DEFAULT_OUTPUT_TAIL_CHARS,
        terminate_grace_seconds: float = 2.0,
    ) -> None:
        self.cache = cache
        self.env = dict(env or {})
        self.output_tail_chars = output_tail_chars
        self.terminate_grace_seconds = terminate_grace_seconds

    async def execute(self, task: Task) -> dict[str, Any]:
        command = task.command
        if command is None:
            return {"command": None, "exit_code": None, "output": "", "cached": False}

        use_cache = self.cache is not None and task.type == TaskType.BUILD
        if use_cache and not task.force:
            cached = await asyncio.to_thread(self.cache.get, task.base_key, task.version)
            if cached is not None:
                logger.debug("Reusing cached output for %s", task.key)
                return {**cached, "cached": True}

        result = await self._run(task, command)
        if use_cache:
            await asyncio.to_thread(self.cache.put, task.base_key, task.version, result)
        return {**result, "cached": False}

    async def _run(self, task: Task, command: str) -> dict[str, Any]:
        env = os.environ.copy()
        env.update(self.env)
        env["DEVLOOP_TASK_KEY"] = task.key
        env["DEVLOOP_VERSION"] = task.version
        cwd = None
        if task.module is not None:
            env["DEVLOOP_MODULE"] = task.module.name
            if task.module.path.is_dir():
                cwd = task.module.path

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as error:
            raise TaskExecutionError(f"Failed to start {command!r}: {error}") from error

        timeout = task.timeout_seconds
        try:
            if timeout is None:
                stdout, _ = await process.communicate()
            else:
                stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as error:
            await self._terminate(process)
            raise TaskExecutionError(
                f"{command!r} timed out after {timeout:g}s",
                exit_code=_TIMEOUT_EXIT_CODE,
                timed_out=True,
            ) from error
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        output = _tail(stdout.decode("utf-8", errors="replace"), self.output_tail_chars)
        if process.returncode != 0:
            raise TaskExecutionError(
                f"{command!r} exited with code {process.returncode}",
                exit_code=process.returncode,
                output=output,
            )
        return {
            "command": command,
            "exit_code": process.returncode,
            "output": output,
            "duration_ms": int((time.monotonic() - start) * 1000),
        }

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace_seconds)
        except TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()


def _tail(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[-limit:]
