"""add/list/remove/update/rollback commands shared by every resource type."""

from typing import Annotated

import typer

from caf.cli.common import (
    AgentOption,
    ForceOption,
    GlobalOption,
    ModeOption,
    NameOption,
    YesOption,
    console,
    fail,
    get_service,
    handle_errors,
    install_scope,
    is_interactive,
    list_scope,
    parse_mode,
    print_add_result,
    print_list,
    select_resources,
)
from caf.models import ListScope
from caf.service import AddResult

SourceArgument = Annotated[
    str,
    typer.Argument(help="Local path, git URL, GitHub/GitLab URL or owner/repo[/path][#ref]"),
]
NameArgument = Annotated[str, typer.Argument(help="Installed resource name")]
ProjectOnlyOption = Annotated[bool, typer.Option("--project", "-p", help="Only list project scope.")]


def run_add(
    resource_type: str,
    source: str,
    agents: list[str] | None,
    global_install: bool,
    mode: str | None,
    force: bool,
    yes: bool,
    names: list[str] | None,
) -> None:
    service = get_service()
    select = select_resources if is_interactive(yes) and not names else None
    with handle_errors():
        result = service.add(
            source,
            resource_type,
            agents=agents or None,
            scope=install_scope(global_install),
            mode=parse_mode(mode),
            force=force,
            yes=yes,
            names=names or None,
            select=select,
        )
    print_add_result(result)


def run_list(resource_type: str, global_only: bool, project_only: bool) -> None:
    service = get_service()
    with handle_errors():
        result = service.list_resources(resource_type, list_scope(global_only, project_only))
    print_list(result, resource_type)


def run_remove(
    resource_type: str,
    name: str,
    global_install: bool,
    agents: list[str] | None,
    force: bool,
    yes: bool,
) -> None:
    service = get_service()
    scope = ListScope(install_scope(global_install).value)
    if is_interactive(yes):
        typer.confirm(f"Remove {resource_type} '{name}' ({scope.value})?", abort=True)
    with handle_errors():
        removed = service.remove(resource_type, name, scope, agents=agents or None, force=force)
    for installation in removed:
        console.print(
            f"[green]Removed {resource_type} '{name}'[/green] from "
            f"{installation.agent} ({installation.scope.value})"
        )


def report_results(results: list[AddResult], verb: str) -> None:
    """Print every result, then exit with the first failure's code."""
    first_error = None
    for result in results:
        for name, targets in result.installed:
            where = ", ".join(f"{t.agent} ({t.scope.value})" for t in targets)
            console.print(f"[green]{verb} {result.resource_type} '{name}'[/green] -> {where}")
        if result.error is not None:
            console.print(f"[red]Failed {result.resource_type} '{result.failed}':[/red] {result.error}")
            first_error = first_error or result.error
    if first_error is not None:
        fail(first_error)


def run_update(resource_type: str, name: str | None, global_install: bool) -> None:
    service = get_service()
    with handle_errors():
        results = service.update(resource_type, name, install_scope(global_install))
    if not results:
        console.print(f"[dim]No tracked {resource_type} to update[/dim]")
        return
    report_results(results, "Updated")


def run_rollback(resource_type: str, name: str, global_install: bool) -> None:
    service = get_service()
    with handle_errors():
        result = service.rollback(resource_type, name, install_scope(global_install))
    print_add_result(result, verb="Rolled back")


def resource_app(resource_type: str, label: str) -> typer.Typer:
    """Build the command group for one resource type."""
    app = typer.Typer(help=f"Manage {label}.", no_args_is_help=True)

    @app.command("add", help=f"Install {label} from a source.")
    def add(
        source: SourceArgument,
        agent: AgentOption = None,
        global_install: GlobalOption = False,
        mode: ModeOption = None,
        force: ForceOption = False,
        yes: YesOption = False,
        name: NameOption = None,
    ) -> None:
        run_add(resource_type, source, agent, global_install, mode, force, yes, name)

    @app.command("list", help=f"List installed {label}.")
    def list_(
        global_only: GlobalOption = False,
        project_only: ProjectOnlyOption = False,
    ) -> None:
        run_list(resource_type, global_only, project_only)

    @app.command("remove", help=f"Remove installed {label}.")
    def remove(
        name: NameArgument,
        agent: AgentOption = None,
        global_install: GlobalOption = False,
        force: ForceOption = False,
        yes: YesOption = False,
    ) -> None:
        run_remove(resource_type, name, global_install, agent, force, yes)

    @app.command("update", help=f"Re-install tracked {label} from their recorded sources.")
    def update(
        name: Annotated[str | None, typer.Argument(help="Resource name; all when omitted")] = None,
        global_install: GlobalOption = False,
    ) -> None:
        run_update(resource_type, name, global_install)

    @app.command("rollback", help=f"Restore the previous recorded version of {label}.")
    def rollback(name: NameArgument, global_install: GlobalOption = False) -> None:
        run_rollback(resource_type, name, global_install)

    return app
