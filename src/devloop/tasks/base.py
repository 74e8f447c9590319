"""Task identity shared by every kind of schedulable work."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from devloop.project.models import ModuleConfig, RunConfig, ServiceConfig, TestConfig


class TaskType(str, Enum):
    """Closed set of task kinds."""

    BUILD = "build"
    DEPLOY = "deploy"
    TEST = "test"
    RUN = "run"


@dataclass(frozen=True, slots=True)
class Task:
    """One unit of work against a module or one of its entities.

    Equality and hashing cover ``type``, ``name``, ``version`` and ``force``;
    the module and entity descriptors are carried along for execution only.
    """

    type: TaskType
    name: str
    version: str
    force: bool = False
    module: ModuleConfig | None = field(default=None, compare=False, repr=False)
    entity: ServiceConfig | TestConfig | RunConfig | ModuleConfig | None = field(
        default=None,
        compare=False,
        repr=False,
    )

    @property
    def base_key(self) -> str:
        return f"{self.type.value}.{self.name}"

    @property
    def key(self) -> str:
        return f"{self.base_key}.{self.version}"

    @property
    def command(self) -> str | None:
        if self.type == TaskType.BUILD:
            return self.module.build_command if self.module is not None else None
        return getattr(self.entity, "command", None)

    @property
    def timeout_seconds(self) -> float | None:
        if self.type == TaskType.BUILD:
            return self.module.build_timeout_seconds if self.module is not None else None
        return getattr(self.entity, "timeout_seconds", None)

    def with_force(self) -> Task:
        return self if self.force else replace(self, force=True)

    @classmethod
    def build(cls, module: ModuleConfig, *, force: bool = False) -> Task:
        return cls(
            type=TaskType.BUILD,
            name=module.name,
            version=module.version,
            force=force,
            module=module,
            entity=module,
        )

    @classmethod
    def deploy(cls, service: ServiceConfig, module: ModuleConfig, *, force: bool = False) -> Task:
        return cls(
            type=TaskType.DEPLOY,
            name=service.name,
            version=module.version,
            force=force,
            module=module,
            entity=service,
        )

    @classmethod
    def test(cls, test: TestConfig, module: ModuleConfig, *, force: bool = False) -> Task:
        return cls(
            type=TaskType.TEST,
            name=test.full_name,
            version=module.version,
            force=force,
            module=module,
            entity=test,
        )

    @classmethod
    def run(cls, run: RunConfig, module: ModuleConfig, *, force: bool = False) -> Task:
        return cls(
            type=TaskType.RUN,
            name=run.name,
            version=module.version,
            force=force,
            module=module,
            entity=run,
        )


def merge_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Collapse tasks sharing a ``base_key``, keeping first-seen order.

    The merged task is forced when any contributing request was forced.
    """

    merged: dict[str, Task] = {}
    for task in tasks:
        existing = merged.get(task.base_key)
        if existing is None:
            merged[task.base_key] = task
        elif task.force and not existing.force:
            merged[task.base_key] = existing.with_force()
    return list(merged.values())
