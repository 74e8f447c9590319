"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import Counter
from pathlib import Path
from typing import Any

import pytest

from devloop.exceptions import ConfigurationError, TaskExecutionError
from devloop.logging_setup import ROOT_LOGGER_NAME
from devloop.project.models import ModuleConfig
from devloop.tasks.base import Task, TaskType

PROJECT_YAML = """
name: demo
modules:
  - name: lib
    path: lib
    build:
      command: "echo building lib"
  - name: api
    path: api
    build:
      command: "echo building api"
      dependencies: [lib]
    services:
      - name: db
        command: "echo db up"
      - name: api
        command: "echo api up"
        dependencies: [db]
    tests:
      - name: unit
        command: "echo unit ok"
      - name: integ
        command: "echo integ ok"
        dependencies: [api]
    tasks:
      - name: migrate
        command: "echo migrated"
        dependencies: [db]
  - name: web
    path: web
    build:
      command: "echo building web"
      dependencies: [api]
"""


def make_task(name: str, *, type: TaskType = TaskType.BUILD, version: str = "v-1", force: bool = False) -> Task:  # noqa: A002
    return Task(type=type, name=name, version=version, force=force)


class FakeProcessor:
    """In-memory task processor with scripted dependencies and failures."""

    def __init__(  # noqa: PLR0913
        self,
        dependencies: dict[str, list[Task]] | None = None,
        *,
        failing: tuple[str, ...] = (),
        discovery_failing: tuple[str, ...] = (),
        delays: dict[str, float] | None = None,
        gates: dict[str, asyncio.Event] | None = None,
    ) -> None:
        self.dependencies = dependencies or {}
        self.failing = set(failing)
        self.discovery_failing = set(discovery_failing)
        self.delays = delays or {}
        self.gates = gates or {}
        self.discover_calls: Counter[str] = Counter()
        self.execute_calls: Counter[str] = Counter()
        self.started: list[str] = []
        self.completed: list[str] = []
        self.active = 0
        self.max_active = 0

    async def discover_dependencies(self, task: Task) -> list[Task]:
        self.discover_calls[task.base_key] += 1
        await asyncio.sleep(0)
        if task.base_key in self.discovery_failing:
            raise ConfigurationError(f"cannot resolve {task.base_key}")
        return list(self.dependencies.get(task.base_key, []))

    async def execute(self, task: Task) -> dict[str, Any]:
        self.execute_calls[task.base_key] += 1
        self.started.append(task.base_key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            gate = self.gates.get(task.base_key)
            if gate is not None:
                await gate.wait()
            await asyncio.sleep(self.delays.get(task.base_key, 0))
            if task.base_key in self.failing:
                raise TaskExecutionError(f"{task.base_key} broke", exit_code=1, output="boom\n")
            self.completed.append(task.base_key)
            return {"key": task.key, "force": task.force}
        finally:
            self.active -= 1


class RecordingProvider:
    """Task provider recording executions, optionally blocking on gates."""

    def __init__(
        self,
        *,
        failing: tuple[str, ...] = (),
        gates: dict[str, asyncio.Event] | None = None,
    ) -> None:
        self.failing = set(failing)
        self.gates = gates or {}
        self.started: list[Task] = []
        self.completed: list[Task] = []

    async def execute(self, task: Task) -> dict[str, Any]:
        self.started.append(task)
        gate = self.gates.get(task.base_key)
        if gate is not None:
            await gate.wait()
        if task.base_key in self.failing:
            raise TaskExecutionError(f"{task.base_key} broke", exit_code=2)
        self.completed.append(task)
        return {"key": task.key}

    def started_keys(self) -> list[str]:
        return [task.base_key for task in self.started]


async def wait_until(predicate, *, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not met in time")
        await asyncio.sleep(0.001)


def write_project(root: Path, text: str = PROJECT_YAML) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for name in ("lib", "api", "web"):
        module_dir = root / name
        module_dir.mkdir(exist_ok=True)
        (module_dir / "main.txt").write_text(f"{name} sources\n", "utf-8")
    project_file = root / "devloop.yml"
    project_file.write_text(text.strip() + "\n", "utf-8")
    return project_file


def module(name: str, path: Path, **kwargs: Any) -> ModuleConfig:
    path.mkdir(parents=True, exist_ok=True)
    return ModuleConfig(name=name, path=path.resolve(), **kwargs)


@pytest.fixture()
def project_file(tmp_path: Path) -> Path:
    return write_project(tmp_path / "project")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Drop DEVLOOP_* variables from the environment of every test."""

    for name in list(os.environ):
        if name.startswith("DEVLOOP_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_devloop_logger():
    """Undo handler changes made by ``setup_logging`` during a test."""

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate
