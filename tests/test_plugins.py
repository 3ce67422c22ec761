"""Tests for the handler registry and plugin loading."""

import json
from pathlib import Path

import pytest

from caf.exceptions import ConflictError, NotFoundError, PluginError
from caf.handlers.base import HandlerContext
from caf.handlers.mcp import McpHandler
from caf.lock import LockManager
from caf.models import Scope
from caf.plugins import PluginManager, create_registry, validate_manifest

HANDLER_SOURCE = '''
from caf.models import ListResult, ValidationResult

loaded = []


class PromptsHandler:
    type = "{resource_type}"
    display_name = "Prompts"
    description = "Prompt snippets"

    def __init__(self, context):
        self.context = context

    def get_supported_agents(self):
        return ["claude-code"]

    def get_install_path(self, agent, scope):
        return self.context.env.root_for(scope) / ".claude" / "prompts"

    def discover(self, source, options=None):
        return []

    def install(self, resource, targets, options):
        pass

    def remove(self, resource, targets, options):
        pass

    def list(self, scope):
        return ListResult()

    def validate(self, resource):
        return ValidationResult()


def create_handler(context):
    return PromptsHandler(context)


def on_load(context):
    loaded.append(context.version)
'''


def write_plugin(root: Path, plugin_id: str = "acme-prompts", resource_type: str = "prompts", **overrides) -> Path:
    plugin_dir = root / plugin_id
    plugin_dir.mkdir(parents=True)
    manifest = {
        "id": plugin_id,
        "name": "Acme Prompts",
        "version": "1.0.0",
        "resourceType": resource_type,
        "supportedAgents": ["claude-code"],
        "entry": "handler.py",
        **overrides,
    }
    (plugin_dir / "plugin.json").write_text(json.dumps(manifest))
    (plugin_dir / "handler.py").write_text(HANDLER_SOURCE.replace("{resource_type}", resource_type))
    return plugin_dir


@pytest.fixture
def manager(ctx: HandlerContext) -> PluginManager:
    return PluginManager(ctx, create_registry(ctx))


class TestHandlerRegistry:
    """Tests for the resource type dispatch table."""

    def test_builtins_registered(self, ctx: HandlerContext):
        registry = create_registry(ctx)

        assert registry.types() == [
            "skills",
            "subagents",
            "rules",
            "claude-code-hooks",
            "cursor-hooks",
            "mcp",
        ]
        assert registry.owner("mcp") is None

    def test_unknown_type_lists_available(self, ctx: HandlerContext):
        with pytest.raises(NotFoundError, match="Available: skills"):
            create_registry(ctx).get("prompts")

    def test_duplicate_type_rejected(self, ctx: HandlerContext):
        registry = create_registry(ctx)

        with pytest.raises(PluginError, match="already registered"):
            registry.register(McpHandler(ctx))

    def test_non_handler_rejected(self, ctx: HandlerContext):
        with pytest.raises(PluginError, match="does not implement"):
            create_registry(ctx, include_builtins=False).register(object())

    def test_snapshot_and_restore(self, ctx: HandlerContext):
        registry = create_registry(ctx)
        snapshot = registry.snapshot()

        registry.unregister("mcp")
        registry.restore(snapshot)

        assert registry.has("mcp")


class TestValidateManifest:
    """Tests for plugin.json validation."""

    def test_valid(self):
        assert validate_manifest(
            {
                "id": "acme",
                "name": "Acme",
                "version": "1.0.0",
                "resourceType": "prompts",
                "supportedAgents": [],
                "entry": "handler.py",
            }
        ) == []

    def test_problems_reported(self):
        problems = validate_manifest({"id": "Bad Id", "entry": "handler.js", "supportedAgents": "x"})

        assert "missing required field 'name'" in problems
        assert "'supportedAgents' must be a list of strings" in problems
        assert "'entry' must be a .py file" in problems
        assert any(p.startswith("'id' must match") for p in problems)


class TestPluginManager:
    """Tests for loading, installing and uninstalling plugins."""

    def test_load_registers_handler(self, manager: PluginManager, tmp_path: Path):
        plugin = manager.load(write_plugin(tmp_path / "src"))

        assert manager.has_handler("prompts")
        assert manager.registry.owner("prompts") == "acme-prompts"
        assert plugin.on_load is not None
        assert [m.id for m in manager.list_plugins()] == ["acme-prompts"]

    def test_type_collision_rejected(self, manager: PluginManager, tmp_path: Path):
        with pytest.raises(PluginError, match="already has a handler"):
            manager.load(write_plugin(tmp_path / "src", "acme-mcp", resource_type="mcp"))

        assert manager.registry.owner("mcp") is None

    def test_missing_entry(self, manager: PluginManager, tmp_path: Path):
        plugin_dir = write_plugin(tmp_path / "src")
        (plugin_dir / "handler.py").unlink()

        with pytest.raises(PluginError, match="entry not found"):
            manager.load(plugin_dir)

    def test_entry_outside_plugin_dir(self, manager: PluginManager, tmp_path: Path):
        plugin_dir = write_plugin(tmp_path / "src", entry="../handler.py")

        with pytest.raises(PluginError, match="entry is invalid"):
            manager.load(plugin_dir)

    def test_import_error_wrapped(self, manager: PluginManager, tmp_path: Path):
        plugin_dir = write_plugin(tmp_path / "src")
        (plugin_dir / "handler.py").write_text("raise RuntimeError('nope')\n")

        with pytest.raises(PluginError, match="failed to import"):
            manager.load(plugin_dir)

    def test_mismatched_handler_type(self, manager: PluginManager, tmp_path: Path):
        plugin_dir = write_plugin(tmp_path / "src")
        (plugin_dir / "plugin.json").write_text(
            json.dumps(
                {
                    "id": "acme-prompts",
                    "name": "Acme",
                    "version": "1.0.0",
                    "resourceType": "snippets",
                    "supportedAgents": [],
                    "entry": "handler.py",
                }
            )
        )

        with pytest.raises(PluginError, match="does not match manifest"):
            manager.load(plugin_dir)
        assert not manager.has_handler("snippets")

    def test_unload(self, manager: PluginManager, tmp_path: Path):
        manager.load(write_plugin(tmp_path / "src"))

        manager.unload("acme-prompts")

        assert not manager.has_handler("prompts")
        with pytest.raises(NotFoundError):
            manager.unload("acme-prompts")

    def test_install_copies_and_records(self, manager: PluginManager, ctx: HandlerContext, tmp_path: Path):
        manager.install(write_plugin(tmp_path / "src"))

        dest = ctx.env.project_state_dir / "plugins" / "acme-prompts"
        assert (dest / "plugin.json").exists()
        entry = LockManager(ctx.env, Scope.PROJECT).get_plugin("acme-prompts")
        assert entry.resource_type == "prompts"
        assert entry.path == str(dest)

    def test_install_twice_conflicts(self, manager: PluginManager, tmp_path: Path):
        source = write_plugin(tmp_path / "src")
        manager.install(source)

        with pytest.raises(ConflictError):
            manager.install(source)
        manager.install(source, force=True)
        assert manager.has_handler("prompts")

    def test_uninstall(self, manager: PluginManager, ctx: HandlerContext, tmp_path: Path):
        manager.install(write_plugin(tmp_path / "src"))

        manager.uninstall("acme-prompts")

        assert not (ctx.env.project_state_dir / "plugins" / "acme-prompts").exists()
        assert LockManager(ctx.env).get_plugins() == []
        assert not manager.has_handler("prompts")

    def test_uninstall_unknown(self, manager: PluginManager):
        with pytest.raises(NotFoundError):
            manager.uninstall("ghost")

    def test_load_all_collects_failures(self, ctx: HandlerContext, tmp_path: Path):
        plugins_root = ctx.env.home / ".coding-agent-fabric" / "plugins"
        write_plugin(plugins_root)
        write_plugin(plugins_root, "acme-mcp", resource_type="mcp")
        manager = PluginManager(ctx, create_registry(ctx))

        loaded, failures = manager.load_all()

        assert [p.manifest.id for p in loaded] == ["acme-prompts"]
        assert [path.name for path, _ in failures] == ["acme-mcp"]

    def test_extra_search_paths(self, ctx: HandlerContext):
        manager = PluginManager(ctx, create_registry(ctx), extra_paths=["~/shared", "vendor"])

        assert manager.search_paths()[2:] == [ctx.env.home / "shared", ctx.env.cwd / "vendor"]
