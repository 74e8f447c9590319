from __future__ import annotations

import asyncio
import os
from pathlib import Path

import allure
import pytest
from conftest import module

from devloop.cache import ResultCache
from devloop.exceptions import TaskExecutionError
from devloop.project.models import RunConfig
from devloop.providers import ShellProvider
from devloop.tasks.base import Task

pytestmark = [
    allure.epic("Providers"),
    allure.feature("Shell commands"),
    pytest.mark.skipif(os.name == "nt", reason="POSIX shell commands"),
]


@pytest.fixture()
def cache(tmp_path: Path):
    result_cache = ResultCache(tmp_path / "state" / "cache.db")
    result_cache.init_schema()
    yield result_cache
    result_cache.close()


def test_runs_command_in_module_directory_with_task_environment(tmp_path: Path) -> None:
    lib = module("lib", tmp_path / "lib", build_command="pwd; echo $DEVLOOP_MODULE $DEVLOOP_VERSION")

    output = asyncio.run(ShellProvider().execute(Task.build(lib)))

    lines = output["output"].splitlines()
    assert Path(lines[0]).resolve() == lib.path
    assert lines[1] == "lib v-unversioned"
    assert output["exit_code"] == 0
    assert output["cached"] is False


def test_non_zero_exit_raises_with_output_tail(tmp_path: Path) -> None:
    lib = module("lib", tmp_path / "lib", build_command="echo compiling; echo oops >&2; exit 3")

    with pytest.raises(TaskExecutionError, match="exited with code 3") as error:
        asyncio.run(ShellProvider().execute(Task.build(lib)))

    assert error.value.exit_code == 3
    assert error.value.output == "compiling\noops\n"


def test_output_is_truncated_to_tail(tmp_path: Path) -> None:
    lib = module("lib", tmp_path / "lib", build_command="printf 'abcdefghij'")

    output = asyncio.run(ShellProvider(output_tail_chars=4).execute(Task.build(lib)))

    assert output["output"] == "ghij"


def test_entity_timeout_kills_the_command(tmp_path: Path) -> None:
    lib = module("lib", tmp_path / "lib")
    run = RunConfig(name="slow", module="lib", command="sleep 5", timeout_seconds=0.2)

    with pytest.raises(TaskExecutionError, match="timed out") as error:
        asyncio.run(ShellProvider(terminate_grace_seconds=0.5).execute(Task.run(run, lib)))

    assert error.value.timed_out


def test_task_without_command_is_a_no_op(tmp_path: Path) -> None:
    lib = module("lib", tmp_path / "lib")

    output = asyncio.run(ShellProvider().execute(Task.build(lib)))

    assert output == {"command": None, "exit_code": None, "output": "", "cached": False}


def test_cached_build_is_skipped_unless_forced(tmp_path: Path, cache: ResultCache) -> None:
    lib = module("lib", tmp_path / "lib", build_command="echo run >> count.txt; echo built")
    provider = ShellProvider(cache=cache)

    first = asyncio.run(provider.execute(Task.build(lib)))
    second = asyncio.run(provider.execute(Task.build(lib)))
    forced = asyncio.run(provider.execute(Task.build(lib, force=True)))

    assert first["cached"] is False
    assert second["cached"] is True
    assert second["output"] == "built\n"
    assert forced["cached"] is False
    assert (lib.path / "count.txt").read_text("utf-8").splitlines() == ["run", "run"]


def test_failed_builds_are_not_cached(tmp_path: Path, cache: ResultCache) -> None:
    lib = module("lib", tmp_path / "lib", build_command="exit 1")
    provider = ShellProvider(cache=cache)

    with pytest.raises(TaskExecutionError):
        asyncio.run(provider.execute(Task.build(lib)))

    assert cache.get("build.lib", lib.version) is None


def test_result_cache_is_write_once(cache: ResultCache) -> None:
    assert cache.get("build.lib", "v-1") is None
    assert cache.put("build.lib", "v-1", {"output": "first"})
    assert not cache.put("build.lib", "v-1", {"output": "second"})
    assert cache.get("build.lib", "v-1") == {"output": "first"}
    assert cache.get("build.lib", "v-2") is None


def test_result_cache_database_uses_wal_journal(cache: ResultCache) -> None:
    with cache.engine.connect() as connection:
        journal_mode = connection.exec_driver_sql("PRAGMA journal_mode").scalar()

    assert cache.db_path.exists()
    assert journal_mode == "wal"
