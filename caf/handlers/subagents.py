"""Subagent definitions, converted to each agent's file format on install.

Sources declare a subagent in ``subagent.json`` (the native JSON format) or
``subagent.yaml``/``subagent.yml`` (the Claude Code YAML format)::

    {"name": "reviewer", "description": "...", "model": "sonnet",
     "instructions": "Review the diff...", "tools": ["Read", "Grep"]}

The resource name is the definition's ``name`` made filesystem-safe. Claude
Code receives ``<name>.yaml``; every other agent gets ``<name>.json``.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from caf.agents import KIND_SUBAGENTS
from caf.constants import SUBAGENT_CONFIG_FILES, SUBAGENTS
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
from caf.utils import hash_config, walk_files

logger = logging.getLogger(__name__)

JSON_FORMAT = "coding-agent-fabric-json"
YAML_FORMAT = "claude-code-yaml"

_EXTENSIONS = {JSON_FORMAT: ".json", YAML_FORMAT: ".yaml"}
_YAML_AGENTS = ("claude-code",)


def is_definition_file(name: str) -> bool:
    """subagent.json/.yaml/.yml, or a prefixed form such as reviewer.subagent.yaml."""
    return name in SUBAGENT_CONFIG_FILES or name.endswith(tuple("." + n for n in SUBAGENT_CONFIG_FILES))


def format_for_path(path: str) -> str:
    return JSON_FORMAT if path.endswith(".json") else YAML_FORMAT


def target_format(agent: str) -> str:
    return YAML_FORMAT if agent in _YAML_AGENTS else JSON_FORMAT


def parse_config(content: str, fmt: str) -> dict[str, Any]:
    """Parse a subagent definition.

    Raises:
        ValidationError: If the content is malformed or not a mapping
    """
    try:
        data = json.loads(content) if fmt == JSON_FORMAT else yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError(f"Malformed subagent definition: {e}")
    if not isinstance(data, dict):
        raise ValidationError("Subagent definition must be a mapping")
    return data


def render_config(config: dict[str, Any], fmt: str) -> str:
    if fmt == JSON_FORMAT:
        return json.dumps(config, indent=2) + "\n"
    return yaml.safe_dump(config, sort_keys=False, allow_unicode=True)


def _config_file(resource: Resource) -> ResourceFile | None:
    for file in resource.files:
        if Path(file.path).suffix in (".json", ".yaml", ".yml"):
            return file
    return None


class SubagentsHandler:
    """Installs subagent definitions, one file per agent."""

    type = SUBAGENTS
    display_name = "Subagents"
    description = "AI subagent configurations"

    def __init__(self, ctx: HandlerContext) -> None:
        self.ctx = ctx

    def get_supported_agents(self) -> list[str]:
        return self.ctx.agents.supporting(KIND_SUBAGENTS)

    def get_install_path(self, agent: str, scope: Scope) -> Path:
        ensure_supported(self, agent)
        return self.ctx.agents.resource_path(agent, KIND_SUBAGENTS, scope)

    def discover(self, source: ParsedSource, options: DiscoverOptions | None = None) -> list[Resource]:
        root = source_dir(source, self.type)
        if root is None:
            return []

        resources = []
        for path in walk_files(root):
            if not is_definition_file(path.name):
                continue
            fmt = format_for_path(path.name)
            try:
                content = path.read_text(encoding="utf-8")
                config = parse_config(content, fmt)
            except (OSError, UnicodeDecodeError, ValidationError) as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            if not isinstance(config.get("name"), str) or not config["name"]:
                logger.debug("Skipping %s: no name", path)
                continue

            version = config.get("version")
            resources.append(
                Resource(
                    type=self.type,
                    name=sanitize_file_name(config["name"]),
                    description=str(config.get("description") or ""),
                    version=str(version) if version is not None else None,
                    metadata={
                        "model": config.get("model"),
                        "format": fmt,
                        "configHash": hash_config(config),
                        "sourcePath": str(path.relative_to(root)),
                    },
                    files=[ResourceFile(path=path.name, content=content)],
                )
            )
        return resources

    def convert(self, resource: Resource, fmt: str) -> str:
        """Render a resource's definition in another on-disk format."""
        file = _config_file(resource)
        if file is None:
            raise ValidationError(f"Subagent '{resource.name}' has no definition file")
        source_format = resource.metadata.get("format") or format_for_path(file.path)
        config = parse_config(file.content, source_format)
        if source_format == fmt:
            return file.content
        return render_config(config, fmt)

    def _target_file(self, resource: Resource, target: InstallTarget) -> tuple[Path, str]:
        fmt = target_format(target.agent)
        install_path = self.get_install_path(target.agent, target.scope)
        return safe_join(install_path, f"{sanitize_file_name(resource.name)}{_EXTENSIONS[fmt]}"), fmt

    def install(self, resource: Resource, targets: list[InstallTarget], options: InstallOptions) -> None:
        if not options.skip_validation:
            result = self.validate(resource)
            if not result.valid:
                raise ValidationError(
                    f"Subagent '{resource.name}' validation failed: {', '.join(result.errors)}"
                )

        plan = [(target, *self._target_file(resource, target)) for target in targets]
        for target, dest, fmt in plan:
            make_dirs(dest.parent)
            if dest.exists() and not options.force:
                raise ConflictError(f"Subagent '{resource.name}' already exists at {dest}")
            write_text(dest, self.convert(resource, fmt))
            self.ctx.audit.success(
                "install-subagent",
                resource.name,
                self.type,
                dest,
                {"agent": target.agent, "scope": target.scope.value, "format": fmt},
            )

    def remove(self, resource: Resource, targets: list[InstallTarget], options: RemoveOptions) -> None:
        for target in targets:
            fmt = target_format(target.agent)
            install_path = self.get_install_path(target.agent, target.scope)
            dest = installed_file(install_path, resource.name, _EXTENSIONS[fmt])
            remove_from_target(self.ctx, resource, target, dest, "remove-subagent", options, dest.unlink)

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
                paths = sorted(
                    p for p in install_path.iterdir() if p.suffix in (".json", ".yaml", ".yml")
                )
            except OSError as e:
                if is_not_found(e):
                    logger.debug("No subagents directory at %s", install_path)
                    continue
                result.errors.append(list_error(self.ctx, self.type, agent, s, install_path, e))
                continue

            for path in paths:
                fmt = format_for_path(path.name)
                try:
                    content = path.read_text(encoding="utf-8")
                    config = parse_config(content, fmt)
                except (OSError, UnicodeDecodeError, ValidationError) as e:
                    result.errors.append(list_error(self.ctx, self.type, agent, s, path, e))
                    continue

                installed = by_name.get(path.stem)
                if installed is None:
                    installed = InstalledResource(
                        type=self.type,
                        name=path.stem,
                        description=str(config.get("description") or ""),
                        metadata={
                            "model": config.get("model"),
                            "format": fmt,
                            "configHash": hash_config(config),
                        },
                        files=[ResourceFile(path=path.name, content=content)],
                    )
                    by_name[path.stem] = installed
                    result.resources.append(installed)
                installed.add_installation(Installation(agent=agent, scope=s, path=str(path)))
        return result

    def validate(self, resource: Resource) -> ValidationResult:
        result = ValidationResult()
        if not resource.name:
            result.errors.append("Subagent name is required")
        if not resource.description:
            result.warnings.append("Subagent description is missing")
        if not resource.metadata.get("format"):
            result.warnings.append("Subagent format not specified")

        file = _config_file(resource)
        if not resource.files:
            result.errors.append("Subagent must have at least one file")
        elif file is None:
            result.errors.append("Subagent has no .json or .yaml definition file")
        else:
            fmt = resource.metadata.get("format") or format_for_path(file.path)
            try:
                parse_config(file.content, fmt)
            except ValidationError as e:
                result.errors.append(f"{file.path}: {e}")
        return result
