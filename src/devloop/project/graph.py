"""Immutable dependency graph snapshot over project modules."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from devloop.exceptions import ConfigurationError
from devloop.project.models import (
    EntityKind,
    ModuleConfig,
    RunConfig,
    ServiceConfig,
    TestConfig,
)

DependantPurpose = Literal["build", "runtime"]

Entity = ModuleConfig | ServiceConfig | TestConfig | RunConfig


@dataclass(slots=True)
class Dependants:
    """Entities that depend on one module, grouped by kind."""

    modules: list[ModuleConfig] = field(default_factory=list)
    services: list[ServiceConfig] = field(default_factory=list)
    tests: list[TestConfig] = field(default_factory=list)
    runs: list[RunConfig] = field(default_factory=list)


class DependencyGraph:
    """Answers module and dependant queries for one resolution cycle.

    Modules keep their configuration order; every query returns entities in
    that order so derived task sets are deterministic.
    """

    def __init__(self, modules: Iterable[ModuleConfig]) -> None:
        self._modules: dict[str, ModuleConfig] = {}
        self._services: dict[str, ServiceConfig] = {}
        self._runs: dict[str, RunConfig] = {}
        for module in modules:
            if module.name in self._modules:
                raise ConfigurationError(f"Duplicate module name: {module.name!r}")
            self._modules[module.name] = module
            for service in module.services:
                self._register(self._services, service.name, service, kind="service")
            for run in module.runs:
                self._register(self._runs, run.name, run, kind="task")

        for module in self._modules.values():
            for dependency in module.build_dependencies:
                if dependency not in self._modules:
                    raise ConfigurationError(
                        f"Module {module.name!r} has unknown build dependency {dependency!r}",
                    )

    @staticmethod
    def _register(registry: dict, name: str, entity: object, *, kind: str) -> None:
        if name in registry:
            raise ConfigurationError(f"Duplicate {kind} name: {name!r}")
        registry[name] = entity

    # -- lookups ----------------------------------------------------------------

    def get_module(self, name: str) -> ModuleConfig:
        try:
            return self._modules[name]
        except KeyError:
            raise ConfigurationError(f"Could not find module {name!r}") from None

    def get_modules(self, names: Sequence[str] | None = None) -> list[ModuleConfig]:
        """Return modules in configuration order, optionally filtered by name."""

        if not names:
            return list(self._modules.values())
        missing = [name for name in names if name not in self._modules]
        if missing:
            raise ConfigurationError(f"Could not find module(s): {', '.join(missing)}")
        wanted = set(names)
        return [module for module in self._modules.values() if module.name in wanted]

    def get_service(self, name: str) -> ServiceConfig:
        try:
            return self._services[name]
        except KeyError:
            raise ConfigurationError(f"Could not find service {name!r}") from None

    def get_run(self, name: str) -> RunConfig:
        try:
            return self._runs[name]
        except KeyError:
            raise ConfigurationError(f"Could not find task {name!r}") from None

    def has_service(self, name: str) -> bool:
        return name in self._services

    def has_run(self, name: str) -> bool:
        return name in self._runs

    def get_entities(
        self,
        kind: EntityKind,
        names: Sequence[str] | None = None,
    ) -> list[Entity]:
        """Return descriptors of one kind, optionally filtered by name.

        Tests are addressed by ``<module>.<test>``.
        """

        if kind == EntityKind.MODULE:
            return list(self.get_modules(names))

        candidates: list[Entity]
        if kind == EntityKind.SERVICE:
            candidates = list(self._services.values())
        elif kind == EntityKind.RUN:
            candidates = list(self._runs.values())
        else:
            candidates = [test for module in self._modules.values() for test in module.tests]

        if not names:
            return candidates

        def _name(entity: Entity) -> str:
            return entity.full_name if isinstance(entity, TestConfig) else entity.name

        known = {_name(entity) for entity in candidates}
        missing = [name for name in names if name not in known]
        if missing:
            raise ConfigurationError(f"Could not find {kind.value}(s): {', '.join(missing)}")
        wanted = set(names)
        return [entity for entity in candidates if _name(entity) in wanted]

    def module_for_path(self, path: Path) -> ModuleConfig | None:
        """Return the module owning ``path`` (deepest module directory wins)."""

        resolved = path.resolve()
        owner: ModuleConfig | None = None
        owner_depth = -1
        for module in self._modules.values():
            module_root = module.path.resolve()
            if resolved != module_root and module_root not in resolved.parents:
                continue
            depth = len(module_root.parts)
            if depth > owner_depth:
                owner = module
                owner_depth = depth
        return owner

    def owns_path(self, module: ModuleConfig, path: Path) -> bool:
        """Whether ``path`` is one of the source files versioned for ``module``."""

        resolved = path.resolve()
        module_root = module.path.resolve()
        if resolved == module_root or module_root not in resolved.parents:
            return False
        owner = self.module_for_path(resolved)
        if owner is None or owner.name != module.name:
            return False
        return module.tracks(resolved.relative_to(module_root).as_posix())

    # -- dependants -------------------------------------------------------------

    def get_dependants(
        self,
        purpose: DependantPurpose,
        module_name: str,
        transitive: bool = False,
    ) -> Dependants:
        """Return everything that depends on ``module_name`` for ``purpose``.

        ``build`` follows build dependencies between modules only. ``runtime``
        additionally returns the services, tests and tasks of the module and of
        its build dependants, plus entities depending on those at runtime.
        """

        if purpose not in ("build", "runtime"):
            raise ValueError(f"Unsupported dependant purpose: {purpose!r}")
        self.get_module(module_name)

        dependant_names = self._build_dependants(module_name, transitive=transitive)
        result = Dependants(
            modules=[m for m in self._modules.values() if m.name in dependant_names],
        )
        if purpose == "build":
            return result

        affected_modules = dependant_names | {module_name}
        affected: set[str] = set()
        for module in self._modules.values():
            if module.name not in affected_modules:
                continue
            affected.update(service.name for service in module.services)
            affected.update(run.name for run in module.runs)

        seeds = set(affected)
        runtime_entities = [*self._services.values(), *self._runs.values()]
        while True:
            reference = affected if transitive else seeds
            added = {
                entity.name
                for entity in runtime_entities
                if entity.name not in affected
                and any(dependency in reference for dependency in entity.dependencies)
            }
            if not added:
                break
            affected |= added
            if not transitive:
                break

        result.services = [s for s in self._services.values() if s.name in affected]
        result.runs = [r for r in self._runs.values() if r.name in affected]
        result.tests = [
            test
            for module in self._modules.values()
            for test in module.tests
            if module.name in affected_modules
            or any(dependency in affected for dependency in test.dependencies)
        ]
        return result

    def _build_dependants(self, module_name: str, *, transitive: bool) -> set[str]:
        found: set[str] = set()
        frontier = [module_name]
        while frontier:
            current = frontier.pop()
            for module in self._modules.values():
                if current in module.build_dependencies and module.name not in found:
                    found.add(module.name)
                    if transitive:
                        frontier.append(module.name)
        found.discard(module_name)
        return found
