from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from conftest import write_project

from devloop import __version__
from devloop.controllers import (
    BuildCommand,
    DeployCommand,
    _build_plan,
    _deploy_plan,
    _WatchPlan,
)
from devloop.main import devloop
from devloop.policies import module_build_tasks, modules_policy
from devloop.project import load_project

pytestmark = [
    allure.epic("CLI"),
    allure.feature("One-shot commands"),
    pytest.mark.skipif(os.name == "nt", reason="POSIX shell commands"),
]

_FAILING_PROJECT = """
modules:
  - name: lib
    path: lib
    build:
      command: "echo cannot compile; exit 2"
  - name: api
    path: api
    build:
      command: "echo building api"
      dependencies: [lib]
  - name: web
    path: web
    build:
      command: "echo building web"
"""


def _invoke(*args: str):
    return CliRunner().invoke(devloop, list(args))


def test_version() -> None:
    result = _invoke("--version")

    assert result.exit_code == 0
    assert __version__ in result.output


def test_build_all_modules(project_file: Path) -> None:
    result = _invoke("build", "--project-path", str(project_file.parent))

    assert result.exit_code == 0, result.output
    assert "[ok] build.lib" in result.output
    assert "[ok] build.web" in result.output
    assert "Done!" in result.output
    assert (project_file.parent / ".devloop" / "cache.db").exists()


def test_second_build_reuses_cached_outputs(project_file: Path) -> None:
    _invoke("build", "lib", "--project-path", str(project_file))

    cached = _invoke("build", "lib", "--project-path", str(project_file))
    forced = _invoke("build", "lib", "--force", "--project-path", str(project_file))

    assert "[cached] build.lib" in cached.output
    assert "[ok] build.lib" in forced.output


def test_failed_build_exits_non_zero_and_skips_dependants(tmp_path: Path) -> None:
    project_file = write_project(tmp_path / "project", _FAILING_PROJECT)

    result = _invoke("build", "--project-path", str(project_file))

    assert result.exit_code == 1
    assert "[failed] build.lib" in result.output
    assert "| cannot compile" in result.output
    assert "[skipped] build.api" in result.output
    assert "skipped, dependency failed: build.lib" in result.output
    assert "[ok] build.web" in result.output
    assert "2 requested task(s) failed!" in result.output


def test_failure_outside_requested_roots_is_not_an_invocation_failure(tmp_path: Path) -> None:
    project_file = write_project(tmp_path / "project", _FAILING_PROJECT)

    result = _invoke("build", "web", "--project-path", str(project_file))

    assert result.exit_code == 0, result.output


def test_test_command_with_name_filter(project_file: Path) -> None:
    result = _invoke("test", "api", "--name", "integ", "--project-path", str(project_file))

    assert result.exit_code == 0, result.output
    assert "[ok] deploy.api" in result.output
    assert "[ok] test.api.integ" in result.output
    assert "test.api.unit" not in result.output


def test_deploy_and_run(project_file: Path) -> None:
    deploy = _invoke("deploy", "db", "--project-path", str(project_file))
    run = _invoke("run", "migrate", "--project-path", str(project_file))

    assert deploy.exit_code == 0, deploy.output
    assert "[ok] deploy.db" in deploy.output
    assert "deploy.api" not in deploy.output
    assert run.exit_code == 0, run.output
    assert "[ok] run.migrate" in run.output


def test_modules_listing(project_file: Path) -> None:
    result = _invoke("modules", "--project-path", str(project_file))

    assert result.exit_code == 0, result.output
    assert "Build dependencies: lib" in result.output
    assert "Service: api (depends on db)" in result.output
    assert "Test: api.integ (depends on api)" in result.output
    assert "Task: migrate (depends on db)" in result.output


def test_configuration_errors_are_reported(tmp_path: Path) -> None:
    missing = _invoke("build", "--project-path", str(tmp_path))
    unknown = _invoke("build", "nope", "--project-path", str(write_project(tmp_path / "p")))

    assert missing.exit_code == 1
    assert "Project file not found" in missing.output
    assert unknown.exit_code == 1
    assert "Could not find module(s): nope" in unknown.output


def test_invalid_environment_is_reported(project_file: Path, monkeypatch) -> None:
    monkeypatch.setenv("DEVLOOP_CONCURRENCY", "0")

    result = _invoke("build", "--project-path", str(project_file))

    assert result.exit_code == 1
    assert "DEVLOOP_CONCURRENCY must be > 0" in result.output


def test_watch_plans_carry_change_policies(project_file: Path) -> None:
    graph = load_project(project_file)
    lib = graph.get_module("lib")

    build = _build_plan(graph, BuildCommand(modules=("lib", "web")))
    deploy = _deploy_plan(graph, DeployCommand(services=("api",)))

    assert [(task.base_key, task.force) for task in build.change_policy(graph, lib)] == [
        ("build.lib", True),
        ("build.web", True),
    ]
    assert [task.base_key for task in deploy.change_policy(graph, lib)] == ["deploy.api"]
    with pytest.raises(TypeError):
        _WatchPlan(  # type: ignore[call-arg]
            graph=graph,
            modules=[lib],
            root_policy=modules_policy(module_build_tasks),
        )
