"""The resource handler contract and helpers shared by its implementations.

A handler is any object satisfying ``ResourceHandler``; handlers do not
inherit from a common base. Behavior that every handler needs (target
checks, the remove failure policy, list error reporting) lives in the
functions below and is composed in by each implementation.

Failure policy:
    install  never tolerates failures; the first conflict or I/O error aborts
             the call and targets already written stay written.
    remove   aborts on the first failure unless ``force`` is set, in which
             case failures become audit warnings and processing continues.
    list     treats a missing location as empty and collects other failures
             in ``ListResult.errors`` without aborting.
"""

import errno
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable

from caf.agents import AgentRegistry
from caf.audit import AuditLogger, AuditSink
from caf.env import Environment
from caf.exceptions import FabricError, FabricIOError, NotFoundError, UnsupportedAgentError
from caf.models import (
    DiscoverOptions,
    InstallOptions,
    InstallTarget,
    ListError,
    ListResult,
    ListScope,
    ParsedSource,
    RemoveOptions,
    Resource,
    Scope,
    ValidationResult,
)
from caf.paths import sanitize_file_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerContext:
    """Collaborators handed to every handler."""

    env: Environment
    agents: AgentRegistry
    audit: AuditLogger

    @classmethod
    def create(cls, env: Environment, sink: AuditSink | None = None) -> "HandlerContext":
        return cls(env=env, agents=AgentRegistry(env), audit=AuditLogger(env, sink))


@runtime_checkable
class ResourceHandler(Protocol):
    """Lifecycle operations for one resource type."""

    type: str
    display_name: str
    description: str

    def get_supported_agents(self) -> list[str]:
        """Agents this handler can install to."""
        ...

    def get_install_path(self, agent: str, scope: Scope) -> Path:
        """Directory holding this handler's resources for an agent and scope."""
        ...

    def discover(self, source: ParsedSource, options: DiscoverOptions | None = None) -> list[Resource]:
        """Read resources of this type from a materialized source directory."""
        ...

    def install(self, resource: Resource, targets: list[InstallTarget], options: InstallOptions) -> None:
        """Write a resource to each target, in order."""
        ...

    def remove(self, resource: Resource, targets: list[InstallTarget], options: RemoveOptions) -> None:
        """Delete a resource from each target, in order."""
        ...

    def list(self, scope: ListScope) -> ListResult:
        """Scan install locations for installed resources."""
        ...

    def validate(self, resource: Resource) -> ValidationResult:
        """Check a resource's required fields and file contents."""
        ...


def ensure_supported(handler: ResourceHandler, agent: str) -> None:
    """Raise UnsupportedAgentError unless the handler declares the agent."""
    supported = handler.get_supported_agents()
    if agent not in supported:
        raise UnsupportedAgentError(
            f"{handler.type} does not support agent '{agent}'. "
            f"Supported: {', '.join(supported) or 'none'}"
        )


def source_dir(source: ParsedSource, resource_type: str) -> Path | None:
    """Return the source's local directory, or None (with a warning) if absent."""
    path = source.local_path
    if path is None or not path.is_dir():
        logger.warning("Source directory %s does not exist, no %s discovered", path, resource_type)
        return None
    return path


def is_not_found(error: BaseException) -> bool:
    return isinstance(error, FileNotFoundError) or (
        isinstance(error, OSError) and error.errno == errno.ENOENT
    )


def write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise FabricIOError(f"Failed to write {path}: {e}")


def installed_file(install_path: Path, name: str, suffix: str) -> Path:
    """Path of a one-file resource under its install directory.

    Installs always use the sanitized name. A hand-placed file named exactly
    ``<name><suffix>`` is matched as well, so whatever ``list`` reports by
    file stem can be removed by that name.
    """
    dest = install_path / f"{sanitize_file_name(name)}{suffix}"
    raw = f"{name}{suffix}"
    if not dest.exists() and Path(raw).name == raw and (install_path / raw).exists():
        return install_path / raw
    return dest


def make_dirs(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FabricIOError(f"Failed to create {path}: {e}")


def remove_from_target(
    ctx: HandlerContext,
    resource: Resource,
    target: InstallTarget,
    target_path: Path,
    action: str,
    options: RemoveOptions,
    delete: Callable[[], None],
    details: dict[str, Any] | None = None,
) -> bool:
    """Run one target's delete under the remove failure policy.

    Returns:
        True if the delete succeeded, False if a failure was tolerated

    Raises:
        NotFoundError: If the resource is absent and force is off
        FabricIOError: If the delete failed for another reason and force is off
    """
    info = {"agent": target.agent, "scope": target.scope.value, **(details or {})}
    try:
        delete()
    except (FabricError, OSError) as e:
        if is_not_found(e):
            error: FabricError = NotFoundError(
                f"{resource.type} '{resource.name}' not found at {target_path}"
            )
        elif isinstance(e, FabricError):
            error = e
        else:
            error = FabricIOError(f"Failed to remove {resource.type} '{resource.name}' at {target_path}: {e}")

        if not options.force:
            ctx.audit.failure(action, resource.name, resource.type, str(error), target_path, info)
            if error is e:
                raise
            raise error from e
        ctx.audit.warning(
            action, resource.name, resource.type, {**info, "error": str(error)}, target_path
        )
        return False

    ctx.audit.success(action, resource.name, resource.type, target_path, info)
    return True


def list_error(
    ctx: HandlerContext,
    resource_type: str,
    agent: str,
    scope: Scope,
    path: Path | None,
    error: BaseException,
) -> ListError:
    """Build a list error entry with the home directory shown as ``~``."""
    shown = str(path) if path is not None else "?"
    home = str(ctx.env.home)
    if shown == home or shown.startswith(home + "/"):
        shown = "~" + shown[len(home):]
    ctx.audit.failure("list", resource_type, resource_type, str(error), path)
    return ListError(agent=agent, scope=scope, error=f"Failed to access {shown}: {error}")


def list_targets(
    handler: ResourceHandler, scope: ListScope
) -> list[tuple[str, Scope]]:
    """(agent, scope) pairs a list call should scan."""
    return [(agent, s) for agent in handler.get_supported_agents() for s in scope.scopes()]
