"""Environment diagnostics and ledger reconciliation commands."""

import shutil

import typer
from rich.table import Table

from caf import __version__
from caf.agents import RESOURCE_KINDS
from caf.cli.common import (
    GlobalOption,
    console,
    get_service,
    handle_errors,
    install_scope,
    list_scope,
)
from caf.cli.resources import ProjectOnlyOption, report_results
from caf.config import config_path
from caf.models import Scope


def doctor() -> None:
    """Show detected agents, state files, handlers and plugins."""
    service = get_service()
    env = service.env
    console.print(f"[bold]caf {__version__}[/bold]")
    console.print(f"Project root: {env.cwd}")
    console.print(f"Home: {env.home}")
    console.print(f"git: {'found' if shutil.which('git') else '[yellow]not found, using tarballs[/yellow]'}")

    table = Table(title="Agents")
    table.add_column("Agent", style="cyan")
    table.add_column("Detected")
    table.add_column("Supports")
    for name in service.ctx.agents.all_names():
        spec = service.ctx.agents.get(name)
        kinds = ", ".join(kind for kind in RESOURCE_KINDS if spec.supports(kind))
        detected = "[green]yes[/green]" if service.ctx.agents.is_detected(name) else "no"
        table.add_row(spec.display_name, detected, kinds)
    console.print(table)

    for scope in (Scope.PROJECT, Scope.GLOBAL):
        lock = service.lock(scope)
        state = "present" if lock.exists() else "absent"
        console.print(f"Lock ({scope.value}): {lock.path} [dim]({state})[/dim]")
        path = config_path(env, scope)
        state = "present" if path.exists() else "absent"
        console.print(f"Config ({scope.value}): {path} [dim]({state})[/dim]")

    console.print(f"Handlers: {', '.join(service.registry.types())}")
    plugins = service.plugins.list_plugins()
    if plugins:
        console.print(f"Plugins: {', '.join(p.id for p in plugins)}")
    for plugin_dir, error in service.plugin_failures:
        console.print(f"[red]Plugin failed:[/red] {plugin_dir}: {error}")


def check(
    global_only: GlobalOption = False,
    project_only: ProjectOnlyOption = False,
) -> None:
    """Compare the ledger with what is on disk. Exits 1 when they disagree."""
    service = get_service()
    with handle_errors():
        drift = service.check(list_scope(global_only, project_only))
    if not drift:
        console.print("[green]Ledger and disk agree[/green]")
        return

    table = Table(title="Drift")
    table.add_column("Type")
    table.add_column("Name", style="cyan")
    table.add_column("Agent")
    table.add_column("Scope")
    table.add_column("Problem", style="yellow")
    for item in drift:
        table.add_row(item.resource_type, item.name, item.agent, item.scope.value, item.problem)
    console.print(table)
    raise typer.Exit(1)


def update_all(global_install: GlobalOption = False) -> None:
    """Re-install every tracked resource from its recorded source."""
    service = get_service()
    scope = install_scope(global_install)
    results = []
    with handle_errors():
        for resource_type in service.registry.types():
            if service.lock(scope).get_by_type(resource_type):
                results.extend(service.update(resource_type, scope=scope))
    if not results:
        console.print("[dim]Nothing tracked to update[/dim]")
        return
    report_results(results, "Updated")
