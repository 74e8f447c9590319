"""Descriptors for modules and the entities they declare."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path

UNTRACKED_DIRS = frozenset({".devloop", ".git", "__pycache__", "node_modules"})


class EntityKind(str, Enum):
    """Kinds of entities a project graph can be queried for."""

    MODULE = "module"
    SERVICE = "service"
    TEST = "test"
    RUN = "run"


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Long-running service deployed from a module."""

    name: str
    module: str
    command: str | None = None
    dependencies: tuple[str, ...] = ()
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class TestConfig:
    """Test suite declared by a module."""

    __test__ = False

    name: str
    module: str
    command: str | None = None
    dependencies: tuple[str, ...] = ()
    timeout_seconds: float | None = None

    @property
    def full_name(self) -> str:
        return f"{self.module}.{self.name}"


@dataclass(frozen=True, slots=True)
class RunConfig:
    """One-off task (migration, seed script) declared by a module."""

    name: str
    module: str
    command: str | None = None
    dependencies: tuple[str, ...] = ()
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class ModuleConfig:
    """A named unit of source with declared build and runtime entities.

    ``version`` is the content fingerprint of the module sources combined with
    the versions of its build dependencies; the loader fills it in.
    """

    name: str
    path: Path
    build_command: str | None = None
    build_dependencies: tuple[str, ...] = ()
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    services: tuple[ServiceConfig, ...] = ()
    tests: tuple[TestConfig, ...] = ()
    runs: tuple[RunConfig, ...] = ()
    build_timeout_seconds: float | None = None
    version: str = field(default="v-unversioned")

    def tracks(self, relative: str) -> bool:
        """Whether a POSIX path relative to the module root belongs to its sources."""

        if any(part in UNTRACKED_DIRS or part.startswith(".") for part in relative.split("/")):
            return False
        if self.include and not matches_any(relative, self.include):
            return False
        return not (self.exclude and matches_any(relative, self.exclude))


def matches_any(relative: str, patterns: Sequence[str]) -> bool:
    for pattern in patterns:
        if fnmatch(relative, pattern):
            return True
        if pattern.startswith("**/") and fnmatch(relative, pattern[3:]):
            return True
    return False
