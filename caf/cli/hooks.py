"""Hook commands; ``--kind`` picks the agent dialect."""

from typing import Annotated

import typer

from caf.cli.common import AgentOption, ForceOption, GlobalOption, ModeOption, NameOption, YesOption
from caf.cli.resources import (
    NameArgument,
    ProjectOnlyOption,
    SourceArgument,
    run_add,
    run_list,
    run_remove,
    run_rollback,
    run_update,
)
from caf.constants import CLAUDE_CODE_HOOKS, CURSOR_HOOKS

HOOK_KINDS = {"claude-code": CLAUDE_CODE_HOOKS, "cursor": CURSOR_HOOKS}

KindOption = Annotated[
    str,
    typer.Option("--kind", "-k", help="Hook dialect: claude-code or cursor."),
]

app = typer.Typer(help="Manage Claude Code and Cursor hooks.", no_args_is_help=True)


def hook_type(kind: str) -> str:
    if kind not in HOOK_KINDS:
        raise typer.BadParameter(f"Unknown hook kind '{kind}'. Available: {', '.join(HOOK_KINDS)}")
    return HOOK_KINDS[kind]


@app.command("add")
def add(
    source: SourceArgument,
    kind: KindOption = "claude-code",
    agent: AgentOption = None,
    global_install: GlobalOption = False,
    mode: ModeOption = None,
    force: ForceOption = False,
    yes: YesOption = False,
    name: NameOption = None,
) -> None:
    """Install hooks from a source.

    Examples:
      caf hooks add ./hooks
      caf hooks add acme/agent-hooks --kind cursor
    """
    run_add(hook_type(kind), source, agent, global_install, mode, force, yes, name)


@app.command("list")
def list_(
    kind: KindOption = "claude-code",
    global_only: GlobalOption = False,
    project_only: ProjectOnlyOption = False,
) -> None:
    """List installed hooks."""
    run_list(hook_type(kind), global_only, project_only)


@app.command("remove")
def remove(
    name: NameArgument,
    kind: KindOption = "claude-code",
    agent: AgentOption = None,
    global_install: GlobalOption = False,
    force: ForceOption = False,
    yes: YesOption = False,
) -> None:
    """Remove an installed hook."""
    run_remove(hook_type(kind), name, global_install, agent, force, yes)


@app.command("update")
def update(
    name: Annotated[str | None, typer.Argument(help="Hook name; all when omitted")] = None,
    kind: KindOption = "claude-code",
    global_install: GlobalOption = False,
) -> None:
    """Re-install tracked hooks from their recorded sources."""
    run_update(hook_type(kind), name, global_install)


@app.command("rollback")
def rollback(
    name: NameArgument,
    kind: KindOption = "claude-code",
    global_install: GlobalOption = False,
) -> None:
    """Restore the previous recorded version of a hook."""
    run_rollback(hook_type(kind), name, global_install)
