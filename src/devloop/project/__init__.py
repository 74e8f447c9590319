"""Project configuration: module descriptors and the dependency graph."""

from devloop.project.graph import Dependants, DependencyGraph
from devloop.project.loader import PROJECT_FILE_NAME, load_project
from devloop.project.models import (
    EntityKind,
    ModuleConfig,
    RunConfig,
    ServiceConfig,
    TestConfig,
)

__all__ = [
    "PROJECT_FILE_NAME",
    "Dependants",
    "DependencyGraph",
    "EntityKind",
    "ModuleConfig",
    "RunConfig",
    "ServiceConfig",
    "TestConfig",
    "load_project",
]
