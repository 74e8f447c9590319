"""CLI entrypoint for devloop."""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from devloop import __version__
from devloop.controllers import (
    BuildCommand,
    CommandResult,
    DeployCommand,
    ModulesCommand,
    RunTaskCommand,
    TestCommand,
    WorkflowCliController,
)
from devloop.exceptions import DevloopError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorkflowCliController()

_PROJECT_OPTION = click.option(
    "--project-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Project file or directory containing `devloop.yml`.",
)
_FORCE_OPTION = click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Run requested tasks even when their version is already cached.",
)
_WATCH_OPTION = click.option(
    "--watch",
    "-w",
    is_flag=True,
    default=False,
    help="Keep running and re-run affected tasks when sources change.",
)


@click.group()
@click.version_option(version=__version__, prog_name="devloop")
def devloop() -> None:
    """Dependency-aware build, test and deploy runner."""


@devloop.command("build")
@click.argument("modules", nargs=-1)
@_PROJECT_OPTION
@_FORCE_OPTION
@_WATCH_OPTION
def build(modules: tuple[str, ...], project_path: Path | None, force: bool, watch: bool) -> None:
    """Build modules and their build dependencies (all modules by default)."""

    command = BuildCommand(project_path=project_path, modules=modules, force=force, watch=watch)
    with _cli_errors():
        if watch:
            _emit_lines(CONTROLLER.watch(command))
            return
        _finish(CONTROLLER.build(command))


@devloop.command("test")
@click.argument("modules", nargs=-1)
@_PROJECT_OPTION
@click.option("--name", default=None, help="Only run tests whose name matches this glob.")
@_FORCE_OPTION
@_WATCH_OPTION
def test(  # noqa: PLR0913
    modules: tuple[str, ...],
    project_path: Path | None,
    name: str | None,
    force: bool,
    watch: bool,
) -> None:
    """Run module tests after building and deploying what they need."""

    command = TestCommand(
        project_path=project_path,
        modules=modules,
        name=name,
        force=force,
        watch=watch,
    )
    with _cli_errors():
        if watch:
            _emit_lines(CONTROLLER.watch(command))
            return
        _finish(CONTROLLER.test(command))


@devloop.command("deploy")
@click.argument("services", nargs=-1)
@_PROJECT_OPTION
@_FORCE_OPTION
@_WATCH_OPTION
def deploy(services: tuple[str, ...], project_path: Path | None, force: bool, watch: bool) -> None:
    """Deploy services (all services by default) with their runtime dependencies."""

    command = DeployCommand(project_path=project_path, services=services, force=force, watch=watch)
    with _cli_errors():
        if watch:
            _emit_lines(CONTROLLER.watch(command))
            return
        _finish(CONTROLLER.deploy(command))


@devloop.command("run")
@click.argument("task")
@_PROJECT_OPTION
@_FORCE_OPTION
def run(task: str, project_path: Path | None, force: bool) -> None:
    """Run a one-off task declared by a module."""

    with _cli_errors():
        _finish(
            CONTROLLER.run_task(RunTaskCommand(project_path=project_path, task=task, force=force)),
        )


@devloop.command("modules")
@_PROJECT_OPTION
def modules(project_path: Path | None) -> None:
    """List configured modules with their versions and entities."""

    with _cli_errors():
        _emit_lines(CONTROLLER.list_modules(ModulesCommand(project_path=project_path)))


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (DevloopError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _finish(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Some requested tasks failed.")


def _emit_lines(lines: Iterable[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    devloop()
