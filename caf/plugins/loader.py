"""The narrow boundary through which third-party handler code is loaded.

A plugin's entry module must define::

    def create_handler(context: PluginContext) -> ResourceHandler: ...

and may define ``on_load(context)`` and ``on_unload()``. Nothing else in the
module is used.
"""

import importlib.util
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable

from caf.agents import AgentRegistry
from caf.audit import AuditLogger
from caf.env import Environment
from caf.exceptions import FabricError, PluginError
from caf.handlers.base import HandlerContext, ResourceHandler
from caf.paths import safe_join
from caf.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginContext:
    """What a plugin receives from the host."""

    version: str
    config_dir: Path
    plugin_dir: Path
    env: Environment
    agents: AgentRegistry
    audit: AuditLogger
    log: logging.Logger

    def handler_context(self) -> HandlerContext:
        return HandlerContext(env=self.env, agents=self.agents, audit=self.audit)


@dataclass
class LoadedPlugin:
    """A plugin whose entry module has been imported."""

    manifest: PluginManifest
    create_handler: Callable[[PluginContext], ResourceHandler]
    on_load: Callable[[PluginContext], Any] | None = None
    on_unload: Callable[[], Any] | None = None
    handler: ResourceHandler | None = field(default=None, repr=False)


def _module_name(plugin_id: str) -> str:
    return "caf_plugin_" + re.sub(r"[^A-Za-z0-9_]", "_", plugin_id)


class PluginLoader:
    """Imports plugin entry modules from their files."""

    def load(self, manifest: PluginManifest) -> LoadedPlugin:
        """Import a plugin's entry module and pick out its lifecycle hooks.

        Raises:
            PluginError: If the entry is missing, fails to import or lacks create_handler
        """
        try:
            entry_path = safe_join(manifest.plugin_dir, manifest.entry)
        except FabricError as e:
            raise PluginError(f"Plugin '{manifest.id}' entry is invalid: {e}")
        if not entry_path.is_file():
            raise PluginError(f"Plugin '{manifest.id}' entry not found: {entry_path}")

        module = self._import(manifest, entry_path)

        create_handler = getattr(module, "create_handler", None)
        if not callable(create_handler):
            raise PluginError(f"Plugin '{manifest.id}' does not define create_handler(context)")

        on_load = getattr(module, "on_load", None)
        on_unload = getattr(module, "on_unload", None)
        return LoadedPlugin(
            manifest=manifest,
            create_handler=create_handler,
            on_load=on_load if callable(on_load) else None,
            on_unload=on_unload if callable(on_unload) else None,
        )

    def _import(self, manifest: PluginManifest, entry_path: Path) -> ModuleType:
        name = _module_name(manifest.id)
        spec = importlib.util.spec_from_file_location(name, entry_path)
        if spec is None or spec.loader is None:
            raise PluginError(f"Cannot import plugin '{manifest.id}' from {entry_path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(name, None)
            raise PluginError(f"Plugin '{manifest.id}' failed to import: {e}") from e
        logger.debug("Imported plugin %s from %s", manifest.id, entry_path)
        return module

    def unload(self, plugin: LoadedPlugin) -> None:
        sys.modules.pop(_module_name(plugin.manifest.id), None)
