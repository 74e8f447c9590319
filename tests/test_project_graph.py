from __future__ import annotations

from pathlib import Path

import allure
import pytest
from conftest import module

from devloop.exceptions import ConfigurationError
from devloop.project import DependencyGraph, EntityKind, RunConfig, ServiceConfig, TestConfig

pytestmark = [
    allure.epic("Project"),
    allure.feature("Dependency graph"),
]


def _graph(tmp_path: Path) -> DependencyGraph:
    return DependencyGraph(
        [
            module("lib", tmp_path / "lib"),
            module(
                "api",
                tmp_path / "api",
                build_dependencies=("lib",),
                services=(
                    ServiceConfig(name="db", module="api"),
                    ServiceConfig(name="api", module="api", dependencies=("db",)),
                ),
                tests=(TestConfig(name="unit", module="api"),),
            ),
            module(
                "web",
                tmp_path / "web",
                build_dependencies=("api",),
                services=(ServiceConfig(name="frontend", module="web", dependencies=("api",)),),
                runs=(RunConfig(name="seed", module="web", dependencies=("frontend",)),),
            ),
            module(
                "tools",
                tmp_path / "tools",
                tests=(TestConfig(name="e2e", module="tools", dependencies=("frontend",)),),
            ),
            module("nested", tmp_path / "web" / "nested"),
        ],
    )


def test_build_dependants_direct_and_transitive(tmp_path: Path) -> None:
    graph = _graph(tmp_path)

    direct = graph.get_dependants("build", "lib")
    transitive = graph.get_dependants("build", "lib", transitive=True)

    assert [m.name for m in direct.modules] == ["api"]
    assert [m.name for m in transitive.modules] == ["api", "web"]
    assert transitive.services == []
    assert transitive.tests == []


def test_runtime_dependants_include_entities_of_affected_modules(tmp_path: Path) -> None:
    graph = _graph(tmp_path)

    dependants = graph.get_dependants("runtime", "web", transitive=True)

    assert [s.name for s in dependants.services] == ["frontend"]
    assert [r.name for r in dependants.runs] == ["seed"]
    assert [t.full_name for t in dependants.tests] == ["tools.e2e"]


def test_runtime_dependants_follow_service_chains_only_when_transitive(tmp_path: Path) -> None:
    graph = _graph(tmp_path)

    direct = graph.get_dependants("runtime", "lib")
    transitive = graph.get_dependants("runtime", "lib", transitive=True)

    assert [m.name for m in direct.modules] == ["api"]
    assert [s.name for s in direct.services] == ["db", "api", "frontend"]
    assert direct.runs == []
    assert [s.name for s in transitive.services] == ["db", "api", "frontend"]
    assert [r.name for r in transitive.runs] == ["seed"]
    assert [t.full_name for t in transitive.tests] == ["api.unit", "tools.e2e"]


def test_unsupported_dependant_purpose(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unsupported dependant purpose"):
        _graph(tmp_path).get_dependants("deploy", "lib")  # type: ignore[arg-type]


def test_get_entities_by_kind_and_name(tmp_path: Path) -> None:
    graph = _graph(tmp_path)

    tests = graph.get_entities(EntityKind.TEST, ["tools.e2e"])
    services = graph.get_entities(EntityKind.SERVICE)

    assert [t.full_name for t in tests] == ["tools.e2e"]
    assert [s.name for s in services] == ["db", "api", "frontend"]
    with pytest.raises(ConfigurationError, match="Could not find service"):
        graph.get_entities(EntityKind.SERVICE, ["missing"])


def test_get_modules_keeps_configuration_order(tmp_path: Path) -> None:
    graph = _graph(tmp_path)

    assert [m.name for m in graph.get_modules(["web", "lib"])] == ["lib", "web"]
    with pytest.raises(ConfigurationError, match="nope"):
        graph.get_modules(["nope"])


def test_module_for_path_prefers_deepest_module(tmp_path: Path) -> None:
    graph = _graph(tmp_path)

    assert graph.module_for_path(tmp_path / "web" / "index.html").name == "web"
    assert graph.module_for_path(tmp_path / "web" / "nested" / "x.py").name == "nested"
    assert graph.module_for_path(tmp_path / "elsewhere.txt") is None


def test_owns_path_follows_include_exclude_and_nesting(tmp_path: Path) -> None:
    graph = DependencyGraph(
        [
            module("lib", tmp_path / "lib", exclude=("dist/**",)),
            module("docs", tmp_path / "docs", include=("**/*.md",)),
            module("inner", tmp_path / "lib" / "inner"),
        ],
    )
    lib = graph.get_module("lib")
    docs = graph.get_module("docs")

    assert graph.owns_path(lib, tmp_path / "lib" / "src" / "core.py")
    assert not graph.owns_path(lib, tmp_path / "lib" / "dist" / "out.bin")
    assert not graph.owns_path(lib, tmp_path / "lib" / ".cache" / "state")
    assert not graph.owns_path(lib, tmp_path / "lib" / "inner" / "code.py")
    assert not graph.owns_path(lib, tmp_path / "docs" / "index.md")
    assert graph.owns_path(docs, tmp_path / "docs" / "guide" / "index.md")
    assert not graph.owns_path(docs, tmp_path / "docs" / "build.sh")


def test_rejects_duplicates_and_unknown_build_dependencies(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Duplicate module name"):
        DependencyGraph([module("a", tmp_path / "a"), module("a", tmp_path / "b")])
    with pytest.raises(ConfigurationError, match="unknown build dependency"):
        DependencyGraph([module("a", tmp_path / "a", build_dependencies=("ghost",))])
