"""Main CLI entry point for caf."""

from typing import Annotated

import typer

from caf import __version__
from caf.cli import hooks, plugins, status
from caf.cli.common import console, setup_logging
from caf.cli.resources import resource_app
from caf.constants import MCP, RULES, SKILLS, SUBAGENTS

app = typer.Typer(
    name="caf",
    help="Install skills, subagents, rules, hooks and MCP servers into coding agents.",
    no_args_is_help=True,
    add_completion=False,
)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"caf {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log progress.")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Log everything, with tracebacks.")] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    setup_logging(verbose=verbose, debug=debug)


app.add_typer(resource_app(SKILLS, "skills"), name="skills")
app.add_typer(resource_app(SUBAGENTS, "subagents"), name="subagents")
app.add_typer(resource_app(RULES, "rules"), name="rules")
app.add_typer(hooks.app, name="hooks")
app.add_typer(resource_app(MCP, "MCP servers"), name="mcp")
app.add_typer(plugins.app, name="plugins")

app.command("doctor")(status.doctor)
app.command("check")(status.check)
app.command("update")(status.update_all)


if __name__ == "__main__":
    app()
