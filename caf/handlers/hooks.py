"""Per-agent tool-use hooks.

A hook is one JSON file in the agent's hooks directory::

    {"hookType": "PreToolUse", "command": "ruff format", "tools": ["Edit"]}

Discovered hooks are named after their sanitized file stem and installed as
``<name>.json``. Each agent has its own hook dialect (allowed hook types and
optional fields); ``HooksHandler`` is configured with a dialect instead of
being subclassed per agent.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from caf.agents import KIND_HOOKS
from caf.constants import CLAUDE_CODE_HOOKS, CURSOR_HOOKS
from caf.exceptions import ConflictError, ValidationError
from caf.handlers.base import (
    HandlerContext,
    ensure_supported,
    installed_file,
    is_not_found,
    list_error,
    list_targets,
    make_dirs,
    remove_from_target,
    source_dir,
    write_text,
)
from caf.models import (
    DiscoverOptions,
    InstalledResource,
    Installation,
    InstallOptions,
    InstallTarget,
    ListResult,
    ListScope,
    ParsedSource,
    RemoveOptions,
    Resource,
    ResourceFile,
    Scope,
    ValidationResult,
)
from caf.paths import safe_join, sanitize_file_name
from caf.utils import walk_files

logger = logging.getLogger(__name__)

HOOK_SUFFIX = ".json"


@dataclass(frozen=True)
class HookDialect:
    """How one agent spells hooks.

    Attributes:
        type: Resource type tag (e.g., "claude-code-hooks")
        agent: The single agent this dialect installs to
        display_name: Human-readable handler name
        description: One-line handler description
        hook_types: Accepted values of ``hookType``
        optional_fields: Extra keys carried into metadata when present
    """

    type: str
    agent: str
    display_name: str
    description: str
    hook_types: tuple[str, ...]
    optional_fields: tuple[str, ...] = ()


CLAUDE_CODE_DIALECT = HookDialect(
    type=CLAUDE_CODE_HOOKS,
    agent="claude-code",
    display_name="Claude Code Hooks",
    description="Manages PreToolUse and PostToolUse hooks for Claude Code",
    hook_types=("PreToolUse", "PostToolUse"),
    optional_fields=("tools",),
)

CURSOR_DIALECT = HookDialect(
    type=CURSOR_HOOKS,
    agent="cursor",
    display_name="Cursor Hooks",
    description="Manages onSave, onCommit and onFileOpen hooks for Cursor",
    hook_types=("onSave", "onCommit", "onFileOpen"),
    optional_fields=("filePattern",),
)


def hook_document(resource: Resource) -> dict[str, Any]:
    """The JSON body written for a hook, rebuilt from its metadata."""
    doc: dict[str, Any] = {
        "hookType": resource.metadata.get("hookType"),
        "command": resource.metadata.get("command"),
    }
    for key, value in resource.metadata.items():
        if key in ("tools", "filePattern") and value is not None:
            doc[key] = value
    if resource.description:
        doc["description"] = resource.description
    return doc


def build_hook_resource(
    dialect: HookDialect,
    name: str,
    hook_type: str,
    command: str,
    description: str = "",
    **extra: Any,
) -> Resource:
    """Create a hook resource whose file content matches its metadata."""
    metadata: dict[str, Any] = {"hookType": hook_type, "command": command}
    metadata.update({k: v for k, v in extra.items() if v is not None})
    resource = Resource(type=dialect.type, name=name, description=description, metadata=metadata)
    resource.files = [
        ResourceFile(
            path=f"{sanitize_file_name(name)}{HOOK_SUFFIX}",
            content=json.dumps(hook_document(resource), indent=2),
        )
    ]
    return resource


class HooksHandler:
    """Installs hook files for the agent named by a dialect."""

    def __init__(self, ctx: HandlerContext, dialect: HookDialect) -> None:
        self.ctx = ctx
        self.dialect = dialect
        self.type = dialect.type
        self.display_name = dialect.display_name
        self.description = dialect.description

    def _is_hook(self, data: Any) -> bool:
        return (
            isinstance(data, dict)
            and data.get("hookType") in self.dialect.hook_types
            and isinstance(data.get("command"), str)
        )

    def _resource_from(self, name: str, content: str, data: dict[str, Any]) -> Resource:
        metadata: dict[str, Any] = {"hookType": data["hookType"], "command": data["command"]}
        for key in self.dialect.optional_fields:
            if key in data:
                metadata[key] = data[key]
        return Resource(
            type=self.type,
            name=name,
            description=data.get("description", "") or "",
            metadata=metadata,
            files=[ResourceFile(path=f"{name}{HOOK_SUFFIX}", content=content)],
        )

    def get_supported_agents(self) -> list[str]:
        if self.dialect.agent in self.ctx.agents.supporting(KIND_HOOKS):
            return [self.dialect.agent]
        return []

    def get_install_path(self, agent: str, scope: Scope) -> Path:
        ensure_supported(self, agent)
        return self.ctx.agents.resource_path(agent, KIND_HOOKS, scope)

    def discover(self, source: ParsedSource, options: DiscoverOptions | None = None) -> list[Resource]:
        root = source_dir(source, self.type)
        if root is None:
            return []

        resources = []
        for path in walk_files(root):
            if path.suffix != HOOK_SUFFIX:
                continue
            try:
                content = path.read_text(encoding="utf-8")
                data = json.loads(content)
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            if not self._is_hook(data):
                continue
            resource = self._resource_from(sanitize_file_name(path.stem), content, data)
            resource.metadata["sourcePath"] = str(path.relative_to(root))
            resources.append(resource)
        return resources

    def install(self, resource: Resource, targets: list[InstallTarget], options: InstallOptions) -> None:
        if not options.skip_validation:
            result = self.validate(resource)
            if not result.valid:
                raise ValidationError(
                    f"Hook '{resource.name}' validation failed: {', '.join(result.errors)}"
                )
        if not resource.files:
            raise ValidationError(f"Hook '{resource.name}' has no file")

        plan = []
        for target in targets:
            install_path = self.get_install_path(target.agent, target.scope)
            for file in resource.files:
                safe_join(install_path, file.path)
            dest = install_path / f"{sanitize_file_name(resource.name)}{HOOK_SUFFIX}"
            plan.append((target, install_path, dest))

        content = resource.files[0].content
        for target, install_path, dest in plan:
            make_dirs(install_path)
            if dest.exists() and not options.force:
                raise ConflictError(f"Hook '{resource.name}' already exists at {dest}")
            write_text(dest, content)
            self.ctx.audit.success(
                "install-hook",
                resource.name,
                self.type,
                dest,
                {
                    "agent": target.agent,
                    "scope": target.scope.value,
                    "hookType": resource.metadata.get("hookType"),
                },
            )

    def remove(self, resource: Resource, targets: list[InstallTarget], options: RemoveOptions) -> None:
        for target in targets:
            install_path = self.get_install_path(target.agent, target.scope)
            dest = installed_file(install_path, resource.name, HOOK_SUFFIX)
            remove_from_target(self.ctx, resource, target, dest, "remove-hook", options, dest.unlink)

    def list(self, scope: ListScope) -> ListResult:
        result = ListResult()
        by_name: dict[str, InstalledResource] = {}
        scanned: set[Path] = set()

        for agent, s in list_targets(self, scope):
            install_path = self.get_install_path(agent, s)
            if install_path in scanned:
                continue
            scanned.add(install_path)
            try:
                paths = sorted(p for p in install_path.iterdir() if p.suffix == HOOK_SUFFIX)
            except OSError as e:
                if is_not_found(e):
                    logger.debug("No hooks directory at %s", install_path)
                    continue
                result.errors.append(list_error(self.ctx, self.type, agent, s, install_path, e))
                continue

            for path in paths:
                try:
                    content = path.read_text(encoding="utf-8")
                    data = json.loads(content)
                except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                    result.errors.append(list_error(self.ctx, self.type, agent, s, path, e))
                    continue
                if not self._is_hook(data):
                    continue

                found = self._resource_from(path.stem, content, data)
                installed = by_name.get(found.name)
                if installed is None:
                    installed = InstalledResource(
                        type=found.type,
                        name=found.name,
                        description=found.description,
                        metadata=found.metadata,
                        files=found.files,
                    )
                    by_name[found.name] = installed
                    result.resources.append(installed)
                installed.add_installation(Installation(agent=agent, scope=s, path=str(path)))
        return result

    def validate(self, resource: Resource) -> ValidationResult:
        result = ValidationResult()
        hook_type = resource.metadata.get("hookType")
        if not hook_type:
            result.errors.append("Missing hookType in metadata")
        elif hook_type not in self.dialect.hook_types:
            result.errors.append(
                f"Invalid hookType: {hook_type}. Must be one of {', '.join(self.dialect.hook_types)}"
            )

        command = resource.metadata.get("command")
        if not command or not isinstance(command, str):
            result.errors.append("Missing command in metadata")

        if not resource.description:
            result.warnings.append("Hook has no description")

        if not resource.files:
            result.errors.append("Hook must have at least one file")
        for file in resource.files:
            if not file.content:
                result.warnings.append(f"File {file.path} is empty")
                continue
            try:
                json.loads(file.content)
            except json.JSONDecodeError as e:
                result.errors.append(f"Invalid JSON in {file.path}: {e}")
        return result


def claude_code_hooks(ctx: HandlerContext) -> HooksHandler:
    return HooksHandler(ctx, CLAUDE_CODE_DIALECT)


def cursor_hooks(ctx: HandlerContext) -> HooksHandler:
    return HooksHandler(ctx, CURSOR_DIALECT)
