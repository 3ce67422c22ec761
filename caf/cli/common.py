"""Shared CLI utilities for caf commands."""

import logging
import sys
from contextlib import contextmanager
from typing import Annotated, Iterator, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from caf.constants import (
    EXIT_CONFLICT,
    EXIT_ERROR,
    EXIT_NOT_FOUND,
    EXIT_SOURCE,
    EXIT_UNSUPPORTED_AGENT,
    EXIT_VALIDATION,
)
from caf.env import Environment
from caf.exceptions import (
    ConfigParseError,
    ConfigValidationError,
    ConflictError,
    FabricError,
    NotFoundError,
    SourceResolutionError,
    UnsupportedAgentError,
    ValidationError,
)
from caf.models import InstallMode, ListResult, ListScope, Resource, Scope
from caf.service import AddResult, FabricService

console = Console()

EXIT_CODES: list[tuple[type[FabricError] | tuple[type[FabricError], ...], int]] = [
    (NotFoundError, EXIT_NOT_FOUND),
    (ConflictError, EXIT_CONFLICT),
    (UnsupportedAgentError, EXIT_UNSUPPORTED_AGENT),
    (SourceResolutionError, EXIT_SOURCE),
    ((ValidationError, ConfigParseError, ConfigValidationError), EXIT_VALIDATION),
]


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Route log records through rich on stderr."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=debug, rich_tracebacks=debug)],
        force=True,
    )


def exit_code_for(error: FabricError) -> int:
    for error_types, code in EXIT_CODES:
        if isinstance(error, error_types):
            return code
    return EXIT_ERROR


def fail(error: FabricError) -> NoReturn:
    """Print an error and exit with the code mapped to its type."""
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(exit_code_for(error))


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn FabricError into a printed message and an exit code."""
    try:
        yield
    except FabricError as e:
        fail(e)


def get_service() -> FabricService:
    with handle_errors():
        service = FabricService(Environment.from_process())
    for plugin_dir, error in service.plugin_failures:
        console.print(f"[yellow]Warning:[/yellow] plugin at {plugin_dir} not loaded: {error}")
    return service


def install_scope(global_install: bool) -> Scope:
    return Scope.GLOBAL if global_install else Scope.PROJECT


def list_scope(global_only: bool, project_only: bool) -> ListScope:
    if global_only and not project_only:
        return ListScope.GLOBAL
    if project_only and not global_only:
        return ListScope.PROJECT
    return ListScope.BOTH


def is_interactive(yes: bool) -> bool:
    return not yes and sys.stdin.isatty()


def select_resources(resources: list[Resource]) -> list[Resource]:
    """Ask which discovered resources to install."""
    if len(resources) == 1:
        return resources
    console.print(f"[bold]Found {len(resources)} resources:[/bold]")
    for index, resource in enumerate(resources, start=1):
        suffix = f" [dim]- {resource.description}[/dim]" if resource.description else ""
        console.print(f"  {index}. {resource.name}{suffix}")

    answer = typer.prompt("Install which? (comma-separated numbers or 'all')", default="all")
    if answer.strip().lower() == "all":
        return resources
    chosen = []
    for part in answer.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit() or not 1 <= int(part) <= len(resources):
            raise typer.BadParameter(f"Invalid selection: {part}")
        chosen.append(resources[int(part) - 1])
    return chosen


def print_add_result(result: AddResult, verb: str = "Installed") -> None:
    """Print what was installed and, when the command stopped early, what was not."""
    for name, targets in result.installed:
        where = ", ".join(f"{t.agent} ({t.scope.value})" for t in targets)
        console.print(f"[green]{verb} {result.resource_type} '{name}'[/green] -> {where}")
    if result.error is not None:
        if result.partial:
            complete = sum(1 for name, _ in result.installed if name != result.failed)
            message = f"Stopped early: {complete} of {result.discovered} resources fully installed"
            if any(name == result.failed for name, _ in result.installed):
                message += f", '{result.failed}' partially installed"
            console.print(f"[yellow]{message}[/yellow]")
        fail(result.error)
    if not result.installed:
        console.print(f"[yellow]No {result.resource_type} found in {result.source}[/yellow]")


def print_list(result: ListResult, resource_type: str) -> None:
    if not result.resources:
        console.print(f"[dim]No {resource_type} installed[/dim]")
    else:
        table = Table(title=f"Installed {resource_type}")
        table.add_column("Name", style="cyan")
        table.add_column("Agents")
        table.add_column("Scope")
        table.add_column("Source", style="dim")
        for resource in result.resources:
            agents = sorted({i.agent for i in resource.installed_for})
            scopes = sorted({i.scope.value for i in resource.installed_for})
            table.add_row(resource.name, ", ".join(agents), ", ".join(scopes), resource.source or "-")
        console.print(table)

    for error in result.errors:
        console.print(f"[yellow]Warning:[/yellow] {error.agent} ({error.scope.value}): {error.error}")


def parse_mode(mode: str | None) -> InstallMode | None:
    if mode is None:
        return None
    try:
        return InstallMode(mode)
    except ValueError:
        raise typer.BadParameter(f"Invalid mode '{mode}'. Available: copy, symlink")


AgentOption = Annotated[
    list[str] | None,
    typer.Option(
        "--agent",
        "-a",
        help="Target agent (repeatable). Defaults to preferred, then detected agents.",
    ),
]
GlobalOption = Annotated[
    bool,
    typer.Option("--global", "-g", help="Use the home directory instead of the current directory."),
]
ForceOption = Annotated[
    bool,
    typer.Option("--force", "-f", help="Overwrite existing resources, or tolerate remove failures."),
]
YesOption = Annotated[bool, typer.Option("--yes", "-y", help="Skip prompts.")]
ModeOption = Annotated[
    str | None,
    typer.Option("--mode", help="Install mode: copy or symlink. Defaults to config, then copy."),
]
NameOption = Annotated[
    list[str] | None,
    typer.Option("--name", "-n", help="Only install resources with this name (repeatable)."),
]
