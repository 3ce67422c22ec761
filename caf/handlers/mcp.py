"""MCP server entries, many per shared JSON document.

Every (agent, scope) pair has one document holding all of its servers::

    {"mcpServers": {"alpha": {"command": "npx", "args": ["alpha-mcp"]}}}

A server's identity is its key in ``mcpServers``; conflicts are detected by
key, not by file existence. Installs and removals are read, pure merge,
write cycles. The write goes through a temporary file and an atomic rename,
but nothing guards against another process changing the document between
the read and the write.
"""

import json
import logging
from pathlib import Path
from typing import Any

from caf.agents import KIND_MCP
from caf.constants import MCP
from caf.exceptions import ConflictError, FabricIOError, NotFoundError, ValidationError
from caf.handlers.base import (
    HandlerContext,
    ensure_supported,
    is_not_found,
    list_error,
    list_targets,
    remove_from_target,
    source_dir,
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
from caf.utils import atomic_write_text, walk_files

logger = logging.getLogger(__name__)

SERVER_TYPES = ("stdio", "sse", "http")
SERVERS_KEY = "mcpServers"
_CONFIG_KEYS = ("command", "args", "env", "url")


def server_type(config: dict[str, Any]) -> str:
    declared = config.get("type")
    if declared in SERVER_TYPES:
        return declared
    return "sse" if config.get("url") else "stdio"


def server_config(resource: Resource) -> dict[str, Any]:
    """The document entry for a server resource."""
    config = {
        key: resource.metadata[key]
        for key in _CONFIG_KEYS
        if resource.metadata.get(key) not in (None, "", [], {})
    }
    if resource.metadata.get("serverType") == "http":
        config["type"] = "http"
    return config


def merge_server(document: dict[str, Any], name: str, config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of document with ``name`` set to config."""
    merged = dict(document)
    servers = dict(merged.get(SERVERS_KEY) or {})
    servers[name] = config
    merged[SERVERS_KEY] = servers
    return merged


def drop_server(document: dict[str, Any], name: str) -> dict[str, Any]:
    """Return a copy of document without ``name``.

    Raises:
        KeyError: If the server is not present
    """
    servers = dict(document.get(SERVERS_KEY) or {})
    del servers[name]
    updated = dict(document)
    updated[SERVERS_KEY] = servers
    return updated


def build_server_resource(name: str, config: dict[str, Any], description: str = "") -> Resource:
    """Create an MCP server resource from a document entry."""
    metadata: dict[str, Any] = {"serverType": server_type(config)}
    for key in _CONFIG_KEYS:
        if key in config:
            metadata[key] = config[key]
    return Resource(
        type=MCP,
        name=name,
        description=description or config.get("description", "") or "",
        metadata=metadata,
        files=[
            ResourceFile(
                path=f"{name}.json",
                content=json.dumps({SERVERS_KEY: {name: config}}, indent=2),
            )
        ],
    )


def read_document(path: Path) -> dict[str, Any]:
    """Read an MCP document.

    Raises:
        FileNotFoundError: If the document does not exist
        ValidationError: If the document is not a JSON object with a server map
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed MCP document {path}: {e}")
    if not isinstance(data, dict) or not isinstance(data.get(SERVERS_KEY, {}), dict):
        raise ValidationError(f"Malformed MCP document {path}: expected an object with '{SERVERS_KEY}'")
    return data


def write_document(path: Path, document: dict[str, Any]) -> None:
    atomic_write_text(path, json.dumps(document, indent=2) + "\n")


class McpHandler:
    """Manages MCP server entries for every agent with an MCP document."""

    type = MCP
    display_name = "MCP Servers"
    description = "Manages MCP server configurations for Claude Code, Cursor and Codex"

    def __init__(self, ctx: HandlerContext) -> None:
        self.ctx = ctx

    def get_supported_agents(self) -> list[str]:
        return self.ctx.agents.supporting(KIND_MCP)

    def get_config_path(self, agent: str, scope: Scope) -> Path:
        """Path of the shared MCP document for an agent and scope."""
        ensure_supported(self, agent)
        return self.ctx.agents.resource_path(agent, KIND_MCP, scope)

    def get_install_path(self, agent: str, scope: Scope) -> Path:
        return self.get_config_path(agent, scope).parent

    def discover(self, source: ParsedSource, options: DiscoverOptions | None = None) -> list[Resource]:
        root = source_dir(source, self.type)
        if root is None:
            return []

        resources = []
        for path in walk_files(root):
            if path.suffix != ".json":
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            if not isinstance(data, dict) or not isinstance(data.get(SERVERS_KEY), dict):
                continue
            for name, config in data[SERVERS_KEY].items():
                if isinstance(config, dict):
                    resources.append(build_server_resource(name, config))
        return resources

    def install(self, resource: Resource, targets: list[InstallTarget], options: InstallOptions) -> None:
        if not options.skip_validation:
            result = self.validate(resource)
            if not result.valid:
                raise ValidationError(
                    f"MCP server '{resource.name}' validation failed: {', '.join(result.errors)}"
                )

        config = server_config(resource)
        for target in targets:
            path = self.get_config_path(target.agent, target.scope)
            try:
                document = read_document(path)
            except FileNotFoundError:
                document = {SERVERS_KEY: {}}
            except OSError as e:
                raise FabricIOError(f"Failed to read {path}: {e}")

            if resource.name in (document.get(SERVERS_KEY) or {}) and not options.force:
                raise ConflictError(f"MCP server '{resource.name}' already exists in {path}")

            write_document(path, merge_server(document, resource.name, config))
            self.ctx.audit.success(
                "install-mcp-server",
                resource.name,
                self.type,
                path,
                {
                    "agent": target.agent,
                    "scope": target.scope.value,
                    "serverType": resource.metadata.get("serverType"),
                },
            )

    def remove(self, resource: Resource, targets: list[InstallTarget], options: RemoveOptions) -> None:
        for target in targets:
            path = self.get_config_path(target.agent, target.scope)

            def delete(path: Path = path) -> None:
                document = read_document(path)
                try:
                    updated = drop_server(document, resource.name)
                except KeyError:
                    raise NotFoundError(f"MCP server '{resource.name}' not found in {path}")
                write_document(path, updated)

            remove_from_target(self.ctx, resource, target, path, "remove-mcp-server", options, delete)

    def list(self, scope: ListScope) -> ListResult:
        result = ListResult()
        by_name: dict[str, InstalledResource] = {}
        scanned: set[Path] = set()

        for agent, s in list_targets(self, scope):
            path = self.get_config_path(agent, s)
            if path in scanned:
                continue
            scanned.add(path)
            try:
                document = read_document(path)
            except ValidationError as e:
                result.errors.append(list_error(self.ctx, self.type, agent, s, path, e))
                continue
            except OSError as e:
                if is_not_found(e):
                    logger.debug("No MCP document at %s", path)
                    continue
                result.errors.append(list_error(self.ctx, self.type, agent, s, path, e))
                continue

            for name, config in (document.get(SERVERS_KEY) or {}).items():
                if not isinstance(config, dict):
                    continue
                installed = by_name.get(name)
                if installed is None:
                    found = build_server_resource(name, config)
                    installed = InstalledResource(
                        type=found.type,
                        name=found.name,
                        description=found.description,
                        metadata=found.metadata,
                        files=found.files,
                    )
                    by_name[name] = installed
                    result.resources.append(installed)
                installed.add_installation(Installation(agent=agent, scope=s, path=str(path)))
        return result

    def validate(self, resource: Resource) -> ValidationResult:
        result = ValidationResult()
        if not resource.name:
            result.errors.append("MCP server name is required")

        kind = resource.metadata.get("serverType")
        if kind not in SERVER_TYPES:
            result.errors.append(
                f"Invalid serverType: {kind}. Must be one of {', '.join(SERVER_TYPES)}"
            )
        elif kind == "stdio" and not isinstance(resource.metadata.get("command"), str):
            result.errors.append("stdio MCP servers require a command")
        elif kind in ("sse", "http") and not isinstance(resource.metadata.get("url"), str):
            result.errors.append(f"{kind} MCP servers require a url")

        if not resource.description:
            result.warnings.append("MCP server has no description")

        for file in resource.files:
            try:
                json.loads(file.content)
            except json.JSONDecodeError as e:
                result.errors.append(f"Invalid JSON in {file.path}: {e}")
        return result
