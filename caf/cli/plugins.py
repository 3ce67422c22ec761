"""Plugin management commands."""

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from caf.cli.common import ForceOption, GlobalOption, console, get_service, handle_errors, install_scope

app = typer.Typer(help="Manage third-party resource handler plugins.", no_args_is_help=True)


@app.command("add")
def add(
    path: Annotated[Path, typer.Argument(help="Directory holding plugin.json")],
    global_install: GlobalOption = False,
    force: ForceOption = False,
) -> None:
    """Install a plugin from a local directory.

    Examples:
      caf plugins add ./acme-prompts
      caf plugins add ./acme-prompts --global
    """
    service = get_service()
    with handle_errors():
        plugin = service.plugins.install(path.resolve(), install_scope(global_install), force=force)
    manifest = plugin.manifest
    console.print(
        f"[green]Installed plugin '{manifest.id}'[/green] {manifest.version} "
        f"(handles {manifest.resource_type})"
    )


@app.command("list")
def list_() -> None:
    """List loaded plugins."""
    service = get_service()
    manifests = service.plugins.list_plugins()
    if not manifests:
        console.print("[dim]No plugins loaded[/dim]")
        return

    table = Table(title="Plugins")
    table.add_column("ID", style="cyan")
    table.add_column("Version")
    table.add_column("Resource type")
    table.add_column("Agents")
    for manifest in manifests:
        table.add_row(
            manifest.id, manifest.version, manifest.resource_type, ", ".join(manifest.supported_agents)
        )
    console.print(table)


@app.command("remove")
def remove(
    plugin_id: Annotated[str, typer.Argument(help="Plugin id")],
    global_install: GlobalOption = False,
) -> None:
    """Uninstall a plugin."""
    service = get_service()
    with handle_errors():
        service.plugins.uninstall(plugin_id, install_scope(global_install))
    console.print(f"[green]Removed plugin '{plugin_id}'[/green]")
