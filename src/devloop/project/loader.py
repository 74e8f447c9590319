"""Load a YAML project file into a versioned dependency graph."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from devloop.exceptions import ConfigurationError
from devloop.project.graph import DependencyGraph
from devloop.project.models import ModuleConfig, RunConfig, ServiceConfig, TestConfig

logger = logging.getLogger(__name__)

PROJECT_FILE_NAME = "devloop.yml"
VERSION_PREFIX = "v-"
_VERSION_CHARS = 10


def load_project(path: Path) -> DependencyGraph:
    """Parse the project file at ``path`` (file or directory) and version its modules."""

    project_file = path / PROJECT_FILE_NAME if path.is_dir() else path
    try:
        raw = yaml.safe_load(project_file.read_text("utf-8"))
    except FileNotFoundError as error:
        raise ConfigurationError(f"Project file not found: {project_file}") from error
    except OSError as error:
        raise ConfigurationError(f"Cannot read project file {project_file}: {error}") from error
    except yaml.YAMLError as error:
        raise ConfigurationError(f"Invalid YAML in {project_file}: {error}") from error

    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Project file {project_file} must contain a mapping.")

    root = project_file.parent
    entries = raw.get("modules") or []
    if not isinstance(entries, list):
        raise ConfigurationError("'modules' must be a list.")
    modules = [_parse_module(entry, root=root) for entry in entries]
    graph = DependencyGraph(assign_versions(modules))
    logger.debug("Loaded %d module(s) from %s", len(modules), project_file)
    return graph


def assign_versions(modules: Sequence[ModuleConfig]) -> list[ModuleConfig]:
    """Return modules with ``version`` set, in their original order.

    A module's version covers its own sources and the versions of its build
    dependencies, so a change in a dependency changes every dependant version.
    """

    by_name = {module.name: module for module in modules}
    roots = [module.path.resolve() for module in modules]
    versions: dict[str, str] = {}

    def _visit(name: str, stack: tuple[str, ...]) -> str:
        if name in versions:
            return versions[name]
        if name in stack:
            cycle = [*stack[stack.index(name) :], name]
            raise ConfigurationError(
                f"Circular build dependencies detected: {' -> '.join(cycle)}",
            )
        module = by_name.get(name)
        if module is None:
            raise ConfigurationError(
                f"Module {stack[-1]!r} has unknown build dependency {name!r}",
            )
        digest = hashlib.sha256()
        digest.update(hash_module_sources(module, nested_roots=roots).encode("utf-8"))
        for dependency in sorted(module.build_dependencies):
            digest.update(f"{dependency}={_visit(dependency, (*stack, name))}".encode())
        versions[name] = VERSION_PREFIX + digest.hexdigest()[:_VERSION_CHARS]
        return versions[name]

    return [replace(module, version=_visit(module.name, ())) for module in modules]


def hash_module_sources(module: ModuleConfig, *, nested_roots: Sequence[Path] = ()) -> str:
    """Content hash over the files that belong to ``module``."""

    digest = hashlib.sha256()
    for relative, file_path in _iter_module_files(module, nested_roots=nested_roots):
        try:
            content = file_path.read_bytes()
        except FileNotFoundError:
            logger.debug("Skipping %s, removed while hashing", file_path)
            continue
        except OSError as error:
            raise ConfigurationError(
                f"Cannot read {file_path} of module {module.name!r}: {error}",
            ) from error
        digest.update(relative.encode("utf-8"))
        digest.update(b"\0")
        digest.update(content)
        digest.update(b"\0")
    return digest.hexdigest()


def _iter_module_files(
    module: ModuleConfig,
    *,
    nested_roots: Sequence[Path],
) -> Iterator[tuple[str, Path]]:
    module_root = module.path.resolve()
    if not module_root.is_dir():
        return
    foreign_roots = [
        root for root in nested_roots if root != module_root and module_root in root.parents
    ]
    for file_path in sorted(module_root.rglob("*")):
        if not file_path.is_file():
            continue
        if any(root in file_path.parents for root in foreign_roots):
            continue
        relative = file_path.relative_to(module_root).as_posix()
        if module.tracks(relative):
            yield relative, file_path


def _parse_module(entry: Any, *, root: Path) -> ModuleConfig:
    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"Module entry must be a mapping, got {entry!r}")
    name = _require_name(entry, context="module")
    build = entry.get("build") or {}
    if not isinstance(build, Mapping):
        raise ConfigurationError(f"Module {name!r}: 'build' must be a mapping.")

    return ModuleConfig(
        name=name,
        path=(root / str(entry.get("path", name))).resolve(),
        build_command=_optional_str(build.get("command"), context=f"module {name!r} build"),
        build_dependencies=_str_tuple(build.get("dependencies"), context=f"module {name!r}"),
        build_timeout_seconds=_optional_timeout(build.get("timeout"), context=name),
        include=_str_tuple(entry.get("include"), context=f"module {name!r} include"),
        exclude=_str_tuple(entry.get("exclude"), context=f"module {name!r} exclude"),
        services=tuple(
            ServiceConfig(module=name, **_entity_fields(item, context="service"))
            for item in _entity_list(entry, "services", module=name)
        ),
        tests=tuple(
            TestConfig(module=name, **_entity_fields(item, context="test"))
            for item in _entity_list(entry, "tests", module=name)
        ),
        runs=tuple(
            RunConfig(module=name, **_entity_fields(item, context="task"))
            for item in _entity_list(entry, "tasks", module=name)
        ),
    )


def _entity_list(entry: Mapping[str, Any], key: str, *, module: str) -> list[Mapping[str, Any]]:
    items = entry.get(key) or []
    if not isinstance(items, list) or not all(isinstance(item, Mapping) for item in items):
        raise ConfigurationError(f"Module {module!r}: '{key}' must be a list of mappings.")
    return items


def _entity_fields(item: Mapping[str, Any], *, context: str) -> dict[str, Any]:
    name = _require_name(item, context=context)
    return {
        "name": name,
        "command": _optional_str(item.get("command"), context=f"{context} {name!r}"),
        "dependencies": _str_tuple(item.get("dependencies"), context=f"{context} {name!r}"),
        "timeout_seconds": _optional_timeout(item.get("timeout"), context=name),
    }


def _require_name(entry: Mapping[str, Any], *, context: str) -> str:
    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"Every {context} requires a non-empty 'name'.")
    return name.strip()


def _optional_str(value: Any, *, context: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"Expected a string command for {context}, got {value!r}")
    return value


def _optional_timeout(value: Any, *, context: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        raise ConfigurationError(f"Timeout for {context!r} must be a positive number.")
    return float(value)


def _str_tuple(value: Any, *, context: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"Expected a list of strings for {context}, got {value!r}")
    return tuple(value)
