"""Discovery, loading and installation of third-party handler plugins.

Plugins live in ``<project>/.coding-agent-fabric/plugins/<id>/`` and
``~/.coding-agent-fabric/plugins/<id>/`` plus any extra ``plugin_paths``
from config.toml. Each plugin directory holds a ``plugin.json`` manifest.
"""

import logging
import shutil
from pathlib import Path

from caf import __version__
from caf.constants import PLUGIN_MANIFEST_NAME, PLUGINS_SUBDIR
from caf.exceptions import ConflictError, FabricIOError, NotFoundError, PluginError
from caf.handlers.base import HandlerContext, ResourceHandler
from caf.lock import LockManager, PluginEntry
from caf.models import Scope
from caf.plugins.loader import LoadedPlugin, PluginContext, PluginLoader
from caf.plugins.manifest import PluginManifest, load_manifest
from caf.plugins.registry import HandlerRegistry

logger = logging.getLogger(__name__)


class PluginManager:
    """Loads plugins into a handler registry and tracks them in the ledger."""

    def __init__(
        self,
        ctx: HandlerContext,
        registry: HandlerRegistry,
        extra_paths: list[str] | None = None,
        loader: PluginLoader | None = None,
    ) -> None:
        self.ctx = ctx
        self.registry = registry
        self.loader = loader or PluginLoader()
        self._extra_paths = list(extra_paths or [])
        self._loaded: dict[str, LoadedPlugin] = {}

    def plugins_dir(self, scope: Scope) -> Path:
        return self.ctx.env.state_dir_for(scope) / PLUGINS_SUBDIR

    def search_paths(self) -> list[Path]:
        """Plugin roots, project first, without duplicates."""
        paths = [self.plugins_dir(Scope.PROJECT), self.plugins_dir(Scope.GLOBAL)]
        for raw in self._extra_paths:
            if raw == "~" or raw.startswith("~/"):
                path = self.ctx.env.home / raw[2:]
            else:
                path = Path(raw)
                if not path.is_absolute():
                    path = self.ctx.env.cwd / path
            paths.append(path)

        unique: list[Path] = []
        for path in paths:
            if path not in unique:
                unique.append(path)
        return unique

    def discover(self) -> list[Path]:
        """Directories under the search paths that hold a plugin.json."""
        found = []
        for root in self.search_paths():
            if not root.is_dir():
                continue
            for child in sorted(root.iterdir()):
                if (child / PLUGIN_MANIFEST_NAME).is_file():
                    found.append(child)
        return found

    def _context(self, manifest: PluginManifest) -> PluginContext:
        return PluginContext(
            version=__version__,
            config_dir=self.ctx.env.project_state_dir,
            plugin_dir=manifest.plugin_dir,
            env=self.ctx.env,
            agents=self.ctx.agents,
            audit=self.ctx.audit,
            log=logging.getLogger(f"caf.plugins.{manifest.id}"),
        )

    def load(self, plugin_dir: Path) -> LoadedPlugin:
        """Load one plugin and register its handler.

        Raises:
            PluginError: If the manifest is invalid, the id or resource type is
                already taken, or the entry module misbehaves
        """
        manifest = load_manifest(plugin_dir)
        if manifest.id in self._loaded:
            raise PluginError(f"Plugin '{manifest.id}' is already loaded")
        if self.registry.has(manifest.resource_type):
            raise PluginError(
                f"Plugin '{manifest.id}' handles '{manifest.resource_type}', "
                "which already has a handler"
            )

        plugin = self.loader.load(manifest)
        context = self._context(manifest)
        try:
            handler = plugin.create_handler(context)
            if plugin.on_load is not None:
                plugin.on_load(context)
        except Exception as e:
            self.loader.unload(plugin)
            if isinstance(e, PluginError):
                raise
            raise PluginError(f"Plugin '{manifest.id}' failed to initialize: {e}") from e

        if getattr(handler, "type", None) != manifest.resource_type:
            self.loader.unload(plugin)
            raise PluginError(
                f"Plugin '{manifest.id}' handler type {getattr(handler, 'type', None)!r} "
                f"does not match manifest resourceType '{manifest.resource_type}'"
            )

        self.registry.register(handler, plugin_id=manifest.id)
        plugin.handler = handler
        self._loaded[manifest.id] = plugin
        logger.info("Loaded plugin %s (%s)", manifest.id, manifest.resource_type)
        return plugin

    def load_all(self) -> tuple[list[LoadedPlugin], list[tuple[Path, str]]]:
        """Load every discovered plugin.

        Returns:
            Tuple of (loaded plugins, [(plugin dir, error message)] for failures)
        """
        loaded = []
        failures = []
        for plugin_dir in self.discover():
            try:
                loaded.append(self.load(plugin_dir))
            except PluginError as e:
                logger.warning("Skipping plugin at %s: %s", plugin_dir, e)
                failures.append((plugin_dir, str(e)))
        return loaded, failures

    def unload(self, plugin_id: str) -> None:
        """Unregister a plugin's handler and run its on_unload hook.

        Raises:
            NotFoundError: If the plugin is not loaded
        """
        plugin = self._loaded.pop(plugin_id, None)
        if plugin is None:
            raise NotFoundError(f"Plugin '{plugin_id}' is not loaded")
        self.registry.unregister(plugin.manifest.resource_type)
        try:
            if plugin.on_unload is not None:
                plugin.on_unload()
        finally:
            self.loader.unload(plugin)

    def install(self, source_dir: Path, scope: Scope = Scope.PROJECT, force: bool = False) -> LoadedPlugin:
        """Copy a plugin directory into the plugins dir, load it and record it.

        Raises:
            ConflictError: If a plugin with the same id is installed and force is off
        """
        manifest = load_manifest(source_dir)
        dest = self.plugins_dir(scope) / manifest.id
        if dest.exists():
            if not force:
                raise ConflictError(f"Plugin '{manifest.id}' already exists at {dest}")
            if manifest.id in self._loaded:
                self.unload(manifest.id)
            shutil.rmtree(dest)

        try:
            shutil.copytree(source_dir, dest, ignore=shutil.ignore_patterns(".git", "__pycache__"))
        except OSError as e:
            raise FabricIOError(f"Failed to copy plugin to {dest}: {e}")

        try:
            plugin = self.load(dest)
        except PluginError:
            shutil.rmtree(dest, ignore_errors=True)
            raise

        LockManager(self.ctx.env, scope).add_plugin(
            PluginEntry(
                id=manifest.id,
                name=manifest.name,
                version=manifest.version,
                resource_type=manifest.resource_type,
                path=str(dest),
                source=str(source_dir),
                supported_agents=list(manifest.supported_agents),
            )
        )
        self.ctx.audit.success(
            "install-plugin", manifest.id, "plugin", dest, {"resourceType": manifest.resource_type}
        )
        return plugin

    def uninstall(self, plugin_id: str, scope: Scope = Scope.PROJECT) -> None:
        """Unload a plugin, delete its directory and drop its ledger entry.

        Raises:
            NotFoundError: If the plugin is not installed in the scope
        """
        dest = self.plugins_dir(scope) / plugin_id
        lock = LockManager(self.ctx.env, scope)
        if lock.get_plugin(plugin_id) is None and not dest.exists():
            raise NotFoundError(f"Plugin '{plugin_id}' is not installed")

        if plugin_id in self._loaded:
            self.unload(plugin_id)
        if dest.exists():
            try:
                shutil.rmtree(dest)
            except OSError as e:
                raise FabricIOError(f"Failed to remove {dest}: {e}")
        if lock.get_plugin(plugin_id) is not None:
            lock.remove_plugin(plugin_id)
        self.ctx.audit.success("remove-plugin", plugin_id, "plugin", dest)

    def list_plugins(self) -> list[PluginManifest]:
        return [plugin.manifest for plugin in self._loaded.values()]

    def has_plugin(self, plugin_id: str) -> bool:
        return plugin_id in self._loaded

    def get_handler(self, resource_type: str) -> ResourceHandler:
        return self.registry.get(resource_type)

    def has_handler(self, resource_type: str) -> bool:
        return self.registry.has(resource_type)

    def list_handlers(self) -> list[str]:
        return self.registry.types()
